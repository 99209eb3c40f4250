"""Deck builders shared by the package engine tests.

Fixture decks are generated with python-pptx so every test starts from a
package a real producer wrote.
"""

import io
from pathlib import Path

import pytest
from PIL import Image
from pptx import Presentation
from pptx.chart.data import CategoryChartData
from pptx.enum.chart import XL_CHART_TYPE
from pptx.util import Inches

BLANK_LAYOUT = 6


def png_bytes(color: str = "red", size: tuple[int, int] = (16, 16)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def build_deck(path: Path, slides: list[dict]) -> Path:
    """Write a deck with one blank-layout slide per spec.

    Spec keys: ``text`` (a text box), ``runs`` (one paragraph split into
    runs), ``image`` (a PNG of that color), ``chart`` (a column chart),
    ``notes`` (speaker notes).
    """
    prs = Presentation()
    for spec in slides:
        slide = prs.slides.add_slide(prs.slide_layouts[BLANK_LAYOUT])
        if spec.get("text"):
            box = slide.shapes.add_textbox(Inches(1), Inches(1), Inches(6), Inches(1))
            box.text_frame.text = spec["text"]
        if spec.get("runs"):
            box = slide.shapes.add_textbox(Inches(1), Inches(2), Inches(6), Inches(1))
            paragraph = box.text_frame.paragraphs[0]
            for text in spec["runs"]:
                paragraph.add_run().text = text
        if spec.get("image"):
            slide.shapes.add_picture(io.BytesIO(png_bytes(spec["image"])), Inches(1), Inches(3))
        if spec.get("chart"):
            chart_data = CategoryChartData()
            chart_data.categories = ["East", "West"]
            chart_data.add_series("Sales", (1.5, 2.5))
            slide.shapes.add_chart(
                XL_CHART_TYPE.COLUMN_CLUSTERED,
                Inches(1), Inches(1), Inches(4), Inches(3),
                chart_data,
            )
        if spec.get("notes"):
            slide.notes_slide.notes_text_frame.text = spec["notes"]
    prs.save(str(path))
    return path


@pytest.fixture
def deck_factory(tmp_path):
    def make(name: str, slides: list[dict]) -> Path:
        return build_deck(tmp_path / name, slides)

    return make


@pytest.fixture
def settings(tmp_path):
    from src.schemas.package_settings import PackageSettings

    return PackageSettings(temp_dir=tmp_path / "work")
