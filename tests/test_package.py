"""Tests for opening, composing and saving presentation packages."""

import zipfile

import pytest
from lxml import etree
from pptx import Presentation
from pptx.enum.shapes import MSO_SHAPE_TYPE

NS = {
    "p": "http://schemas.openxmlformats.org/presentationml/2006/main",
    "r": "http://schemas.openxmlformats.org/officeDocument/2006/relationships",
    "rel": "http://schemas.openxmlformats.org/package/2006/relationships",
    "ct": "http://schemas.openxmlformats.org/package/2006/content-types",
}
R_ID = f"{{{NS['r']}}}id"


def read_part(pptx_path, name):
    with zipfile.ZipFile(pptx_path) as zf:
        return etree.fromstring(zf.read(name))


def media_names(pptx_path):
    with zipfile.ZipFile(pptx_path) as zf:
        return sorted(n for n in zf.namelist() if n.startswith("ppt/media/"))


def slide_texts(package):
    return [slide.text() for slide in package.get_slides()]


class TestOpen:
    def test_open_lists_slides_in_manifest_order(self, deck_factory, settings):
        from src.opc_engine import Package

        path = deck_factory("deck.pptx", [{"text": "One"}, {"text": "Two"}, {"text": "Three"}])
        with Package.open(path, settings) as package:
            assert slide_texts(package) == ["One", "Two", "Three"]
            assert package.slides == package.get_slides()
            assert [s.path for s in package.get_slides()] == [
                "ppt/slides/slide1.xml",
                "ppt/slides/slide2.xml",
                "ppt/slides/slide3.xml",
            ]

    def test_fresh_deck_has_no_problems(self, deck_factory, settings):
        from src.opc_engine import Package

        path = deck_factory("deck.pptx", [{"text": "A", "image": "red"}])
        with Package.open(path, settings) as package:
            assert package.content_types.resolve("_rels/.rels") is not None
            assert package.find_problems() == []

    def test_malformed_slide_part(self, deck_factory, tmp_path, settings):
        from src.opc_engine import Package, PackageOpenError

        path = deck_factory("deck.pptx", [{"text": "A"}])
        broken = tmp_path / "broken.pptx"
        with zipfile.ZipFile(path) as zin, zipfile.ZipFile(broken, "w") as zout:
            for entry in zin.infolist():
                data = zin.read(entry)
                if entry.filename == "ppt/slides/slide1.xml":
                    data = data[: len(data) // 2]
                zout.writestr(entry, data)

        with pytest.raises(PackageOpenError) as info:
            Package.open(broken, settings)
        assert isinstance(info.value.__cause__, etree.XMLSyntaxError)
        assert list((tmp_path / "work").iterdir()) == []

    def test_missing_file(self, tmp_path, settings):
        from src.opc_engine import Package, PackageOpenError

        with pytest.raises(PackageOpenError) as info:
            Package.open(tmp_path / "nope.pptx", settings)
        assert isinstance(info.value.__cause__, FileNotFoundError)
        assert list((tmp_path / "work").iterdir()) == []

    def test_not_a_zip(self, tmp_path, settings):
        from src.opc_engine import Package, PackageOpenError

        bogus = tmp_path / "bogus.pptx"
        bogus.write_text("definitely not a zip archive")
        with pytest.raises(PackageOpenError) as info:
            Package.open(bogus, settings)
        assert isinstance(info.value.__cause__, zipfile.BadZipFile)
        assert list((tmp_path / "work").iterdir()) == []

    def test_missing_presentation_part(self, tmp_path, settings):
        from src.opc_engine import Package, PackageOpenError

        path = tmp_path / "partial.pptx"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr(
                "[Content_Types].xml",
                '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types"/>',
            )
        with pytest.raises(PackageOpenError, match="ppt/presentation.xml"):
            Package.open(path, settings)
        assert list((tmp_path / "work").iterdir()) == []


class TestAddSlide:
    def test_scenario_slide_with_image(self, deck_factory, settings, tmp_path):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"text": "S1"}, {"text": "S2", "image": "blue"}])
        source_path = deck_factory("source.pptx", [{"text": "T", "image": "red"}])
        before_media = media_names(target_path)
        before_rels = {
            el.get("Id")
            for el in read_part(target_path, "ppt/_rels/presentation.xml.rels")
        }

        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            target.add_slide(source.get_slides()[0])
            assert slide_texts(target) == ["S1", "S2", "T"]
            assert target.get_slides()[2].path == "ppt/slides/slide3.xml"
            assert target.find_problems() == []
            out = target.save_as(tmp_path / "out.pptx")

        new_media = sorted(set(media_names(out)) - set(before_media))
        assert len(new_media) == 1
        assert new_media[0] not in before_media
        assert new_media[0].endswith(".png")

        presentation = read_part(out, "ppt/presentation.xml")
        ids = [int(el.get("id")) for el in presentation.iterfind("p:sldIdLst/p:sldId", NS)]
        assert ids == [256, 257, 258]
        new_r_id = presentation.findall("p:sldIdLst/p:sldId", NS)[-1].get(R_ID)
        assert new_r_id not in before_rels

        rels = {
            el.get("Id"): el.get("Target")
            for el in read_part(out, "ppt/_rels/presentation.xml.rels")
        }
        assert set(rels) - before_rels == {new_r_id}
        assert rels[new_r_id] == "slides/slide3.xml"

        reopened = Presentation(str(out))
        assert len(reopened.slides) == 3
        pictures = [s for s in reopened.slides[2].shapes if s.shape_type == MSO_SHAPE_TYPE.PICTURE]
        assert len(pictures) == 1

    def test_new_image_gets_content_type_override(self, deck_factory, settings, tmp_path):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"text": "text only"}])
        source_path = deck_factory("source.pptx", [{"image": "green"}])

        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            assert "png" not in target.content_types.defaults
            target.add_slide(source.get_slides()[0])
            assert target.content_types.overrides["/ppt/media/image1.png"] == "image/png"
            assert target.content_types.resolve("ppt/slides/slide2.xml") == (
                "application/vnd.openxmlformats-officedocument.presentationml.slide+xml"
            )
            assert target.find_problems() == []

    def test_identical_media_is_linked_not_copied(self, deck_factory, settings):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"image": "red"}])
        source_path = deck_factory("source.pptx", [{"image": "red"}])

        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            before = [p for p in target.parts() if p.startswith("ppt/media/")]
            target.add_slide(source.get_slides()[0])
            after = [p for p in target.parts() if p.startswith("ppt/media/")]
            assert after == before

            imported = target.get_slides()[1]
            images = [r.path for r in imported.get_resources() if r.path.startswith("ppt/media/")]
            assert images == before

    def test_shared_template_parts_are_not_duplicated(self, deck_factory, settings):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"text": "A"}])
        source_path = deck_factory("source.pptx", [{"text": "B"}, {"text": "C"}])

        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            layouts_before = [p for p in target.parts() if p.startswith("ppt/slideLayouts/slideLayout")]
            target.add_slides(source.get_slides())
            assert slide_texts(target) == ["A", "B", "C"]
            assert [p for p in target.parts() if p.startswith("ppt/slideMasters/slideMaster")] == [
                "ppt/slideMasters/slideMaster1.xml"
            ]
            layouts_after = [p for p in target.parts() if p.startswith("ppt/slideLayouts/slideLayout")]
            assert layouts_after == layouts_before

    def test_copied_master_is_registered(self, deck_factory, settings, tmp_path):
        from src.opc_engine import Package
        from src.schemas.package_settings import PackageSettings

        no_reuse = PackageSettings(temp_dir=settings.temp_dir, reuse_identical_parts=False)
        target_path = deck_factory("target.pptx", [{"text": "A"}])
        source_path = deck_factory("source.pptx", [{"text": "B"}])

        with Package.open(target_path, no_reuse) as target, Package.open(source_path, no_reuse) as source:
            target.add_slide(source.get_slides()[0])
            assert target.find_problems() == []
            out = target.save_as(tmp_path / "out.pptx")

        presentation = read_part(out, "ppt/presentation.xml")
        master_ids = [int(el.get("id")) for el in presentation.iterfind("p:sldMasterIdLst/p:sldMasterId", NS)]
        assert len(master_ids) == 2

        layout_ids = []
        for name in ("ppt/slideMasters/slideMaster1.xml", "ppt/slideMasters/slideMaster2.xml"):
            master = read_part(out, name)
            layout_ids += [int(el.get("id")) for el in master.iterfind("p:sldLayoutIdLst/p:sldLayoutId", NS)]
        all_ids = master_ids + layout_ids
        assert len(all_ids) == len(set(all_ids))
        assert min(all_ids) >= 2147483648

        reopened = Presentation(str(out))
        assert len(reopened.slide_masters) == 2
        assert len(reopened.slides) == 2

    def test_chart_slide_brings_its_workbook(self, deck_factory, settings, tmp_path):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"text": "A"}])
        source_path = deck_factory("source.pptx", [{"chart": True}])

        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            target.add_slide(source.get_slides()[0])
            parts = target.parts()
            assert "ppt/charts/chart1.xml" in parts
            assert any(p.startswith("ppt/embeddings/") and p.endswith(".xlsx") for p in parts)
            assert target.find_problems() == []
            out = target.save_as(tmp_path / "out.pptx")

        reopened = Presentation(str(out))
        charts = [s for s in reopened.slides[1].shapes if s.has_chart]
        assert len(charts) == 1
        assert list(charts[0].chart.plots[0].categories) == ["East", "West"]

    def test_each_import_gets_its_own_chart(self, deck_factory, settings, tmp_path):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"text": "A"}])
        source_path = deck_factory("source.pptx", [{"chart": True}])

        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            target.add_slide(source.get_slides()[0])
            target.add_slide(source.get_slides()[0])
            charts = [p for p in target.parts() if p.startswith("ppt/charts/chart")]
            workbooks = [p for p in target.parts() if p.startswith("ppt/embeddings/")]
            assert charts == ["ppt/charts/chart1.xml", "ppt/charts/chart2.xml"]
            assert len(workbooks) == 2

            per_slide = [
                [r.path for r in slide.get_resources() if r.path.startswith("ppt/charts/")]
                for slide in target.get_slides()[1:]
            ]
            assert per_slide == [["ppt/charts/chart1.xml"], ["ppt/charts/chart2.xml"]]
            layouts = [p for p in target.parts() if p.startswith("ppt/slideLayouts/slideLayout")]
            assert len(layouts) == 11
            assert target.find_problems() == []
            out = target.save_as(tmp_path / "out.pptx")

        reopened = Presentation(str(out))
        assert [len([s for s in slide.shapes if s.has_chart]) for slide in reopened.slides] == [0, 1, 1]

    def test_notes_master_is_shared(self, deck_factory, settings, tmp_path):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"text": "A"}])
        source_path = deck_factory(
            "source.pptx",
            [{"text": "B", "notes": "first note"}, {"text": "C", "notes": "second note"}],
        )

        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            target.add_slides(source.get_slides())
            notes_masters = [p for p in target.parts() if p.startswith("ppt/notesMasters/notesMaster")]
            assert notes_masters == ["ppt/notesMasters/notesMaster1.xml"]
            assert target.find_problems() == []
            out = target.save_as(tmp_path / "out.pptx")

        reopened = Presentation(str(out))
        assert reopened.slides[1].notes_slide.notes_text_frame.text == "first note"
        assert reopened.slides[2].notes_slide.notes_text_frame.text == "second note"

    def test_repeated_imports_keep_names_and_ids_unique(self, deck_factory, settings, tmp_path):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"text": "A", "image": "red"}])
        source_path = deck_factory("source.pptx", [{"text": "B", "image": "blue"}])

        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            for _ in range(3):
                target.add_slide(source.get_slides()[0])
            assert target.find_problems() == []
            out = target.save_as(tmp_path / "out.pptx")

        with zipfile.ZipFile(out) as zf:
            names = zf.namelist()
        assert len(names) == len(set(names))

        presentation = read_part(out, "ppt/presentation.xml")
        ids = [int(el.get("id")) for el in presentation.iterfind("p:sldIdLst/p:sldId", NS)]
        assert ids == [256, 257, 258, 259]
        r_ids = [el.get(R_ID) for el in presentation.iterfind("p:sldIdLst/p:sldId", NS)]
        assert len(r_ids) == len(set(r_ids))
        assert len(Presentation(str(out)).slides) == 4

    def test_slide_id_follows_current_maximum(self, deck_factory, settings):
        from src.opc_engine import Package
        from src.opc_engine.constants import qn

        target_path = deck_factory("target.pptx", [{"text": "A"}, {"text": "B"}])
        source_path = deck_factory("source.pptx", [{"text": "C"}])

        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            first = target.presentation.xpath("p:sldIdLst/p:sldId")[0]
            first.set("id", "900")
            target.commit()
            target.add_slide(source.get_slides()[0])
            ids = [int(el.get("id")) for el in target.presentation.xpath("p:sldIdLst/p:sldId")]
            assert ids == [900, 257, 901]
            assert target.presentation.xpath("p:sldIdLst/p:sldId")[-1].get(qn("r:id"))

    def test_import_into_deck_without_slides(self, tmp_path, deck_factory, settings):
        from src.opc_engine import Package

        empty = tmp_path / "empty.pptx"
        Presentation().save(str(empty))
        source_path = deck_factory("source.pptx", [{"text": "Only"}])

        with Package.open(empty, settings) as target, Package.open(source_path, settings) as source:
            assert target.get_slides() == []
            target.add_slide(source.get_slides()[0])
            assert slide_texts(target) == ["Only"]
            ids = [int(el.get("id")) for el in target.presentation.xpath("p:sldIdLst/p:sldId")]
            assert ids == [256]
            out = target.save_as(tmp_path / "out.pptx")

        assert len(Presentation(str(out)).slides) == 1

    def test_duplicate_slide_within_package(self, deck_factory, settings):
        from src.opc_engine import Package

        path = deck_factory("deck.pptx", [{"text": "Again", "image": "red"}])
        with Package.open(path, settings) as package:
            media_before = [p for p in package.parts() if p.startswith("ppt/media/")]
            package.add_slide(package.get_slides()[0])
            assert slide_texts(package) == ["Again", "Again"]
            assert [p for p in package.parts() if p.startswith("ppt/media/")] == media_before
            assert package.find_problems() == []


class TestTemplate:
    def test_template_mapping_and_callable(self, deck_factory, settings, tmp_path):
        from src.opc_engine import Package

        path = deck_factory("deck.pptx", [{"text": "Hello {{name}}"}, {"text": "Page {{page}} of {{total}}"}])
        with Package.open(path, settings) as package:
            assert package.template({"name": "World"}) == 1
            assert package.template(lambda index: {"page": index + 1, "total": 2}) == 2
            assert slide_texts(package) == ["Hello World", "Page 2 of 2"]
            out = package.save_as(tmp_path / "out.pptx")

        reopened = Presentation(str(out))
        assert reopened.slides[0].shapes[0].text_frame.text == "Hello World"

    def test_templated_text_survives_later_imports(self, deck_factory, settings):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"text": "Dear {{name}}"}])
        source_path = deck_factory("source.pptx", [{"text": "Appendix"}])
        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            target.template({"name": "Ada"})
            target.add_slide(source.get_slides()[0])
            assert slide_texts(target) == ["Dear Ada", "Appendix"]

    def test_custom_placeholder_delimiters(self, deck_factory, tmp_path):
        from src.opc_engine import Package
        from src.schemas.package_settings import PackageSettings

        custom = PackageSettings(temp_dir=tmp_path / "work", placeholder_open="[", placeholder_close="]")
        path = deck_factory("deck.pptx", [{"text": "Total: [amount] ({{amount}})"}])
        with Package.open(path, custom) as package:
            package.template({"amount": 42})
            assert slide_texts(package) == ["Total: 42 ({{amount}})"]


class TestLifecycle:
    def test_save_overwrites_source_and_round_trips(self, deck_factory, settings):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"text": "A"}])
        source_path = deck_factory("source.pptx", [{"text": "B", "image": "red"}, {"text": "C"}])

        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            target.add_slides(reversed(source.get_slides()))
            expected = slide_texts(target)
            target.save()

        assert expected == ["A", "C", "B"]
        with Package.open(target_path, settings) as reopened:
            assert slide_texts(reopened) == expected
            assert reopened.find_problems() == []

    def test_package_stays_usable_after_save_as(self, deck_factory, settings, tmp_path):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"text": "A"}])
        source_path = deck_factory("source.pptx", [{"text": "B"}])

        with Package.open(target_path, settings) as target, Package.open(source_path, settings) as source:
            target.save_as(tmp_path / "first.pptx")
            target.add_slide(source.get_slides()[0])
            target.save_as(tmp_path / "second.pptx")

        assert len(Presentation(str(tmp_path / "first.pptx")).slides) == 1
        assert len(Presentation(str(tmp_path / "second.pptx")).slides) == 2

    def test_unsaved_changes_do_not_touch_source(self, deck_factory, settings):
        from src.opc_engine import Package

        target_path = deck_factory("target.pptx", [{"text": "A"}])
        original = target_path.read_bytes()
        with Package.open(target_path, settings) as target:
            target.add_slide(target.get_slides()[0])
        assert target_path.read_bytes() == original

    def test_working_copy_removed_on_close(self, deck_factory, settings):
        from src.opc_engine import Package

        path = deck_factory("deck.pptx", [{"text": "A"}])
        package = Package.open(path, settings)
        working_copy = package.tmp_name
        assert working_copy.exists()
        assert working_copy.parent == settings.temp_dir

        package.close()
        assert package.closed
        assert not working_copy.exists()
        package.close()  # second close is a no-op

    def test_working_copy_removed_when_collected(self, deck_factory, settings):
        import gc

        from src.opc_engine import Package

        path = deck_factory("deck.pptx", [{"text": "A"}])
        package = Package.open(path, settings)
        working_copy = package.tmp_name
        del package
        gc.collect()
        assert not working_copy.exists()

    def test_keep_working_copy(self, deck_factory, tmp_path):
        from src.opc_engine import Package
        from src.schemas.package_settings import PackageSettings

        keep = PackageSettings(temp_dir=tmp_path / "work", keep_working_copy=True)
        path = deck_factory("deck.pptx", [{"text": "A"}])
        with Package.open(path, keep) as package:
            working_copy = package.tmp_name
        assert working_copy.exists()


class LinkedPart:
    """Stand-in part: a path and a relationship table, no content."""

    def __init__(self, path, links):
        from src.opc_engine.resources import Relationship, RelationshipTable

        self.path = path
        self.relationships = RelationshipTable(
            [Relationship(r_id, "related", target) for r_id, target in links.items()]
        )

    def internal_relationships(self):
        return [rel for rel in self.relationships if not rel.is_external]


class TestMatching:
    def test_matches_follow_links_between_identical_copies(self):
        from src.opc_engine.package import _consistent_matches

        layout = LinkedPart("src/layout1.xml", {"rId1": "src/master1.xml"})
        master = LinkedPart("src/master1.xml", {"rId1": "src/layout1.xml"})
        layout_a = LinkedPart("ppt/layoutA.xml", {"rId1": "ppt/masterA.xml"})
        master_a = LinkedPart("ppt/masterA.xml", {"rId1": "ppt/layoutA.xml"})
        layout_b = LinkedPart("ppt/layoutB.xml", {"rId1": "ppt/masterB.xml"})
        master_b = LinkedPart("ppt/masterB.xml", {"rId1": "ppt/layoutB.xml"})

        by_path = {layout.path: layout, master.path: master}
        candidates = {
            layout.path: [layout_a, layout_b],
            master.path: [master_b, master_a],
        }
        matches = _consistent_matches(by_path, candidates)

        assert matches == {
            "src/layout1.xml": "ppt/layoutA.xml",
            "src/master1.xml": "ppt/masterA.xml",
        }

    def test_unmatched_link_drops_the_pair(self):
        from src.opc_engine.package import _consistent_matches

        layout = LinkedPart("src/layout1.xml", {"rId1": "src/master1.xml"})
        master = LinkedPart("src/master1.xml", {})
        target_layout = LinkedPart("ppt/layout1.xml", {"rId1": "ppt/master9.xml"})
        target_master = LinkedPart("ppt/master1.xml", {})

        matches = _consistent_matches(
            {layout.path: layout, master.path: master},
            {layout.path: [target_layout], master.path: [target_master]},
        )
        assert matches == {"src/master1.xml": "ppt/master1.xml"}
