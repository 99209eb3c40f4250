"""Presentation packages: open a working copy, import slides, template, save.

Importing a slide copies the slide and every part it depends on into this
package. Parts the package already holds with identical content (typically the
layouts, masters and theme of a shared template) are linked instead of copied,
so decks built from one template stay small and keep a single master.

Every structural mutation ends in ``commit()``: the touched manifests are
written and the whole graph is rebuilt from the store, so the in-memory view
never drifts from what will be saved.
"""

import logging
import posixpath
import shutil
import weakref
import zipfile
import zlib
from collections import deque
from pathlib import Path
from typing import Iterable, Iterator, Optional

from lxml import etree
from pptx.opc.constants import CONTENT_TYPE as CT
from pptx.opc.constants import RELATIONSHIP_TYPE as RT

from src.opc_engine.archive_store import ArchiveStore
from src.opc_engine.constants import (
    CONTENT_TYPES_PATH,
    MIN_MASTER_ID,
    MIN_SLIDE_ID,
    NS_RELS,
    PRESENTATION_PATH,
    qn,
)
from src.opc_engine.content_types import ContentTypeRegistry, extension_of
from src.opc_engine.naming import allocate
from src.opc_engine.errors import PackageOpenError
from src.opc_engine.resources import Resource, XmlResource, load_resource
from src.opc_engine.slide import Slide, TemplateData
from src.schemas.package_settings import PackageSettings
from src.utils.file_utils import create_working_copy, remove_file

logger = logging.getLogger(__name__)

_OPEN_ERRORS = (
    OSError,
    EOFError,
    RuntimeError,  # encrypted entries
    NotImplementedError,  # unsupported compression method
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    zlib.error,
)

# Parts an imported slide may share with the slides already in the package.
_SHAREABLE_TYPES = {
    CT.PML_SLIDE_LAYOUT,
    CT.PML_SLIDE_MASTER,
    CT.PML_NOTES_MASTER,
    CT.PML_HANDOUT_MASTER,
    CT.OFC_THEME,
}
_SHAREABLE_MEDIA = ("image/", "audio/", "video/")

# Child order of p:presentation; list elements must be inserted in this order.
_PRESENTATION_CHILDREN = (
    "p:sldMasterIdLst",
    "p:notesMasterIdLst",
    "p:handoutMasterIdLst",
    "p:sldIdLst",
    "p:sldSz",
    "p:notesSz",
    "p:smartTags",
    "p:embeddedFontLst",
    "p:custShowLst",
    "p:photoAlbum",
    "p:custDataLst",
    "p:kinsoku",
    "p:defaultTextStyle",
    "p:modifyVerifier",
    "p:extLst",
)


def _release(store: ArchiveStore, working_copy: Path, keep: bool) -> None:
    store.discard()
    if keep:
        logger.info(f"Working copy kept at {working_copy}")
    else:
        remove_file(working_copy)


def _get_or_add_list(root, tag: str):
    """Return the ``tag`` child of p:presentation, creating it in schema order."""
    existing = root.find(qn(tag))
    if existing is not None:
        return existing
    element = etree.Element(qn(tag))
    later = {qn(t) for t in _PRESENTATION_CHILDREN[_PRESENTATION_CHILDREN.index(tag) + 1:]}
    for child in root:
        if child.tag in later:
            child.addprevious(element)
            return element
    root.append(element)
    return element


class Package:
    """A presentation opened through an isolated working copy.

    The source file is only written by ``save()``. The working copy is removed
    by ``close()``, on leaving a ``with`` block, or when the Package is garbage
    collected, whichever comes first.
    """

    def __init__(self, filename: str | Path, settings: Optional[PackageSettings] = None) -> None:
        self.filename = Path(filename)
        self.settings = settings or PackageSettings()
        self.content_types: ContentTypeRegistry | None = None
        self.presentation: XmlResource | None = None
        self._slides: list[Slide] = []

        try:
            self.tmp_name = create_working_copy(
                self.filename, self.settings.temp_dir, self.settings.temp_prefix
            )
        except OSError as e:
            logger.warning(f"Cannot copy {self.filename}: {e}")
            raise PackageOpenError(f"Cannot open {self.filename}: {e}") from e

        try:
            self.store = ArchiveStore(self.tmp_name, self.settings.compression)
        except _OPEN_ERRORS as e:
            remove_file(self.tmp_name)
            logger.warning(f"Cannot open {self.filename.name} as a zip archive: {e}")
            raise PackageOpenError(f"Cannot open {self.filename.name}: {e}") from e

        self._finalizer = weakref.finalize(
            self, _release, self.store, self.tmp_name, self.settings.keep_working_copy
        )
        try:
            self._load()
        except PackageOpenError:
            self._finalizer()
            raise

        logger.info(f"Opened {self.filename.name} ({len(self._slides)} slides)")

    @classmethod
    def open(cls, filename: str | Path, settings: Optional[PackageSettings] = None) -> "Package":
        return cls(filename, settings)

    def __repr__(self) -> str:
        return f"<Package {self.filename.name} slides={len(self._slides)}>"

    def __enter__(self) -> "Package":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self) -> None:
        missing = [p for p in (CONTENT_TYPES_PATH, PRESENTATION_PATH) if not self.store.exists(p)]
        if missing:
            raise PackageOpenError(
                f"{self.filename.name} is not a presentation package, missing: {', '.join(missing)}"
            )
        try:
            self.content_types = ContentTypeRegistry(self.store)
            self.presentation = XmlResource(PRESENTATION_PATH, self.store, self.content_types)
        except etree.XMLSyntaxError as e:
            raise PackageOpenError(f"Malformed manifest in {self.filename.name}: {e}") from e
        try:
            self._load_slides()
        except etree.XMLSyntaxError as e:
            raise PackageOpenError(f"Malformed slide part in {self.filename.name}: {e}") from e

    def _load_slides(self) -> None:
        self._slides = []
        for sld_id in self.presentation.xpath("p:sldIdLst/p:sldId"):
            r_id = sld_id.get(qn("r:id"))
            self._slides.append(self.presentation.get_resource(r_id, resource_class=Slide))

    def refresh(self) -> "Package":
        """Reload the working store from disk and rebuild the graph."""
        self.store.close()
        self.store.open()
        self._load()
        return self

    def commit(self) -> "Package":
        """Persist the manifests, then rebuild everything from the store."""
        self.presentation.save()
        self.content_types.save()
        return self.refresh()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def slides(self) -> list[Slide]:
        return list(self._slides)

    def get_slides(self) -> list[Slide]:
        """Slides in presentation order."""
        return list(self._slides)

    def parts(self) -> list[str]:
        return sorted(self.store.list())

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def find_problems(self) -> list[str]:
        """Consistency problems a consumer would trip over.

        Reports parts without a content type, relationship ids used in XML but
        absent from the part's table, duplicate relationship ids, internal
        relationships to missing parts, and duplicate slide ids.
        """
        problems = [
            f"{path}: no content type" for path in self.content_types.unresolved(self.store.list())
        ]
        for name in self.parts():
            if not name.endswith(".xml") or name == CONTENT_TYPES_PATH:
                continue
            part = XmlResource(name, self.store)
            if self.store.exists(part.rels_path):
                raw = etree.fromstring(self.store.read(part.rels_path))
                r_ids = [el.get("Id") for el in raw.iterfind(f"{{{NS_RELS}}}Relationship")]
                for r_id in sorted({r for r in r_ids if r_ids.count(r) > 1}):
                    problems.append(f"{name}: duplicate relationship id {r_id}")
            used = {r_id for r_id in part.relationship_ids_in_content() if r_id}
            for r_id in sorted(used - set(part.relationships.ids())):
                problems.append(f"{name}: {r_id} has no relationship entry")
            for rel in part.internal_relationships():
                if not self.store.exists(rel.target):
                    problems.append(f"{name}: {rel.r_id} points at missing part {rel.target}")

        slide_ids = [el.get("id") for el in self.presentation.xpath("p:sldIdLst/p:sldId")]
        for slide_id in sorted({i for i in slide_ids if slide_ids.count(i) > 1}):
            problems.append(f"{PRESENTATION_PATH}: duplicate slide id {slide_id}")
        return problems

    # ------------------------------------------------------------------
    # Slide import
    # ------------------------------------------------------------------

    def add_slide(self, slide: Slide) -> "Package":
        """Append a copy of ``slide``, which may belong to another open Package.

        There is no rollback: if this raises, the working copy may be partly
        mutated and the Package should be discarded.
        """
        source_name = f"{slide.store.path.name}:{slide.path}"
        resources = slide.get_resources()

        path_map: dict[str, str] = {}
        if self.settings.reuse_identical_parts:
            path_map.update(self._match_existing(resources))
        path_map.update(self._link_singletons(resources, path_map))
        to_copy = self._parts_to_copy(slide, resources, path_map)
        logger.debug(
            f"{source_name}: {len(resources)} dependent parts, "
            f"{len(path_map)} already present, {len(to_copy)} to copy"
        )

        clones = [resource.clone() for resource in to_copy]
        slide = slide.clone()
        for clone in clones + [slide]:
            original = clone.path
            self._copy_resource(clone)
            path_map[original] = clone.path

        for clone in clones + [slide]:
            clone.relink(path_map)
            clone.save()

        for clone in clones:
            kind = self._kind(clone)
            if kind == CT.PML_SLIDE_MASTER:
                self._register_master(clone)
            elif kind == CT.PML_NOTES_MASTER:
                self._register_notes_master(clone)

        r_id = self.presentation.add_resource(slide, RT.SLIDE)
        sld_id_lst = _get_or_add_list(self.presentation.content, "p:sldIdLst")
        current = [int(el.get("id")) for el in sld_id_lst.iterfind(qn("p:sldId"))]
        ref = etree.SubElement(sld_id_lst, qn("p:sldId"))
        ref.set("id", str(max(current) + 1 if current else MIN_SLIDE_ID))
        ref.set(qn("r:id"), r_id)

        logger.info(f"Imported {source_name} as {slide.path} ({r_id}, {len(clones)} parts copied)")
        self.commit()
        return self

    def add_slides(self, slides: Iterable[Slide]) -> "Package":
        for slide in slides:
            self.add_slide(slide)
        return self

    def _copy_resource(self, resource: Resource) -> None:
        """Give a clone a free name in this package and store it there."""
        new_path = allocate(self.store, resource.pattern_path)
        resource.attach(self.store, self.content_types)
        resource.rename(posixpath.basename(new_path))
        self.content_types.register_override(resource.path, resource.content_type)
        resource.save()
        logger.debug(f"Copied part to {resource.path}")

    def _kind(self, resource: Resource) -> Optional[str]:
        return resource.content_type or self.content_types.type_for(resource.path)

    def _parts_like(self, path: str, loaded: dict[str, Resource]) -> Iterator[Resource]:
        directory, ext = posixpath.dirname(path), extension_of(path)
        for name in self.store.names():
            if posixpath.dirname(name) != directory or extension_of(name) != ext:
                continue
            if name not in loaded:
                try:
                    loaded[name] = load_resource(self.store, name, self.content_types)
                except etree.XMLSyntaxError as e:
                    logger.warning(f"Ignoring malformed part {name} when matching: {e}")
                    continue
            yield loaded[name]

    def _match_existing(self, resources: list[Resource]) -> dict[str, str]:
        """Map source parts onto parts this package already holds.

        A source part matches a target part when their content is identical and
        each of their relationships has the same id, the same type and a target
        that matches in turn (external targets must be the same URI). Layouts
        and masters point at each other, so matching starts from every
        content-identical pair and drops pairs until nothing changes.
        """
        by_path = {resource.path: resource for resource in resources}
        loaded: dict[str, Resource] = {}
        digests: dict[str, str] = {}

        def digest(resource: Resource) -> str:
            key = f"{id(resource.store)}:{resource.path}"
            if key not in digests:
                digests[key] = resource.content_digest()
            return digests[key]

        candidates: dict[str, list[Resource]] = {}
        for resource in resources:
            if not self._is_shareable(resource):
                continue
            matches = [
                part for part in self._parts_like(resource.path, loaded)
                if digest(part) == digest(resource)
            ]
            if matches:
                candidates[resource.path] = matches

        return _consistent_matches(by_path, candidates)

    def _is_shareable(self, resource: Resource) -> bool:
        """Template parts and media; charts, embeddings and notes slides belong to one slide."""
        kind = self._kind(resource) or ""
        return kind in _SHAREABLE_TYPES or kind.startswith(_SHAREABLE_MEDIA)

    def _link_singletons(self, resources: list[Resource], path_map: dict[str, str]) -> dict[str, str]:
        """A presentation has one notes master; reuse it when there is one."""
        existing = self.presentation.relationships.find_by_type(RT.NOTES_MASTER)
        if not existing:
            return {}
        return {
            resource.path: existing[0].target
            for resource in resources
            if resource.path not in path_map and self._kind(resource) == CT.PML_NOTES_MASTER
        }

    @staticmethod
    def _parts_to_copy(slide: Slide, resources: list[Resource], path_map: dict[str, str]) -> list[Resource]:
        """Parts reachable from the slide without passing through a present part."""
        by_path = {resource.path: resource for resource in resources}
        seen = {slide.path}
        ordered: list[Resource] = []
        queue: deque[Resource] = deque([slide])
        while queue:
            owner = queue.popleft()
            for rel in owner.internal_relationships():
                target = rel.target
                if target in seen or target in path_map or target not in by_path:
                    continue
                seen.add(target)
                ordered.append(by_path[target])
                queue.append(by_path[target])
        return ordered

    # ------------------------------------------------------------------
    # Master registration
    # ------------------------------------------------------------------

    def _master_and_layout_ids(self) -> list[int]:
        """Ids of p:sldMasterId and every master's p:sldLayoutId (one id space)."""
        ids = [int(el.get("id")) for el in self.presentation.xpath("p:sldMasterIdLst/p:sldMasterId")]
        for rel in self.presentation.relationships.find_by_type(RT.SLIDE_MASTER):
            master = self.presentation.get_resource(rel.r_id)
            ids.extend(int(el.get("id")) for el in master.xpath("p:sldLayoutIdLst/p:sldLayoutId"))
        return ids

    def _register_master(self, master: XmlResource) -> None:
        """List a copied slide master in the presentation.

        Both the relationship and the p:sldMasterId entry are needed, and the
        master's layout ids are renumbered to stay unique in the presentation.
        """
        next_id = max(self._master_and_layout_ids(), default=MIN_MASTER_ID - 1) + 1
        r_id = self.presentation.add_resource(master, RT.SLIDE_MASTER)
        id_lst = _get_or_add_list(self.presentation.content, "p:sldMasterIdLst")
        entry = etree.SubElement(id_lst, qn("p:sldMasterId"))
        entry.set("id", str(next_id))
        entry.set(qn("r:id"), r_id)
        for layout_id in master.xpath("p:sldLayoutIdLst/p:sldLayoutId"):
            next_id += 1
            layout_id.set("id", str(next_id))
        master.save()
        logger.debug(f"Registered slide master {master.path} as {r_id}")

    def _register_notes_master(self, notes_master: XmlResource) -> None:
        r_id = self.presentation.add_resource(notes_master, RT.NOTES_MASTER)
        id_lst = _get_or_add_list(self.presentation.content, "p:notesMasterIdLst")
        entry = etree.SubElement(id_lst, qn("p:notesMasterId"))
        entry.set(qn("r:id"), r_id)
        logger.debug(f"Registered notes master {notes_master.path} as {r_id}")

    # ------------------------------------------------------------------
    # Templating
    # ------------------------------------------------------------------

    def template(self, data: TemplateData) -> int:
        """Fill placeholders on every slide; ``data`` may be a callable of the slide index."""
        total = 0
        for index, slide in enumerate(self._slides):
            total += slide.template(
                data, index,
                open_tag=self.settings.placeholder_open,
                close_tag=self.settings.placeholder_close,
            )
        logger.info(f"Templated {len(self._slides)} slides ({total} replacements)")
        return total

    # ------------------------------------------------------------------
    # Saving and teardown
    # ------------------------------------------------------------------

    def save_as(self, target: str | Path) -> Path:
        """Write the working copy to ``target``; the Package stays usable."""
        target = Path(target)
        self.store.close()
        try:
            shutil.copyfile(self.tmp_name, target)
        finally:
            self.store.open()
            self._load()
        logger.info(f"Saved {target}")
        return target

    def save(self) -> Path:
        """Overwrite the file this Package was opened from."""
        return self.save_as(self.filename)

    def close(self) -> None:
        """Drop the working copy. Unsaved changes are lost."""
        self._finalizer()


def _prune(by_path: dict[str, Resource], candidates: dict[str, list[Resource]]) -> None:
    """Drop candidate pairs whose relationships disagree, until nothing changes."""
    changed = True
    while changed:
        changed = False
        for path in list(candidates):
            kept = [
                part for part in candidates[path]
                if _links_agree(by_path[path], part, candidates)
            ]
            if len(kept) < len(candidates[path]):
                changed = True
                if kept:
                    candidates[path] = kept
                else:
                    del candidates[path]


def _consistent_matches(by_path: dict[str, Resource], candidates: dict[str, list[Resource]]) -> dict[str, str]:
    """Pick one target part per matched source part.

    When the target holds several identical copies (two identical masters with
    their layouts), choosing a part also fixes the parts it links to, so a
    matched layout and its matched master always point at each other.
    """
    chosen: dict[str, Resource] = {}
    while True:
        _prune(by_path, candidates)
        for path in [p for p in chosen if p not in candidates]:
            del chosen[path]
        open_paths = [path for path in candidates if path not in chosen]
        if not open_paths:
            break
        stack = [(open_paths[0], candidates[open_paths[0]][0])]
        while stack:
            path, part = stack.pop()
            if path in chosen:
                continue
            chosen[path] = part
            candidates[path] = [part]
            for rel in by_path[path].internal_relationships():
                if rel.target not in candidates or rel.target in chosen:
                    continue
                linked = part.relationships.get(rel.r_id).target
                stack.extend((rel.target, p) for p in candidates[rel.target] if p.path == linked)
    return {path: part.path for path, part in chosen.items()}


def _links_agree(source: Resource, target: Resource, candidates: dict[str, list[Resource]]) -> bool:
    if sorted(source.relationships.ids()) != sorted(target.relationships.ids()):
        return False
    for rel in source.relationships:
        other = target.relationships.get(rel.r_id)
        if (other.rel_type, other.is_external) != (rel.rel_type, rel.is_external):
            return False
        if rel.is_external:
            if other.target != rel.target:
                return False
        elif other.target not in {part.path for part in candidates.get(rel.target, ())}:
            return False
    return True
