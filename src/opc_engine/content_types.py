"""The ``[Content_Types].xml`` manifest.

Every part in the package must resolve to a content type, either through an
``Override`` for its exact name or a ``Default`` for its extension. Consumers
refuse packages where a part resolves to nothing.
"""

import logging
import posixpath
import re
from typing import Optional

from lxml import etree
from pptx.opc.constants import CONTENT_TYPE as CT

from src.opc_engine.constants import CONTENT_TYPES_PATH, NS_CT
from src.opc_engine.resources import XmlResource

logger = logging.getLogger(__name__)

# XML parts whose type depends on where they live, not on their extension.
_PART_NAME_TYPES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"^ppt/presentation\.xml$"), CT.PML_PRESENTATION_MAIN),
    (re.compile(r"^ppt/slides/slide\d+\.xml$"), CT.PML_SLIDE),
    (re.compile(r"^ppt/slideLayouts/slideLayout\d+\.xml$"), CT.PML_SLIDE_LAYOUT),
    (re.compile(r"^ppt/slideMasters/slideMaster\d+\.xml$"), CT.PML_SLIDE_MASTER),
    (re.compile(r"^ppt/notesSlides/notesSlide\d+\.xml$"), CT.PML_NOTES_SLIDE),
    (re.compile(r"^ppt/notesMasters/notesMaster\d+\.xml$"), CT.PML_NOTES_MASTER),
    (re.compile(r"^ppt/handoutMasters/handoutMaster\d+\.xml$"), CT.PML_HANDOUT_MASTER),
    (re.compile(r"^ppt/theme/theme\d+\.xml$"), CT.OFC_THEME),
    (re.compile(r"^ppt/tags/tag\d+\.xml$"), CT.PML_TAGS),
    (re.compile(r"^ppt/comments/comment\d+\.xml$"), CT.PML_COMMENTS),
    (re.compile(r"^ppt/charts/chart\d+\.xml$"), CT.DML_CHART),
    (re.compile(r"^ppt/charts/style\d+\.xml$"), "application/vnd.ms-office.chartstyle+xml"),
    (re.compile(r"^ppt/charts/colors\d+\.xml$"), "application/vnd.ms-office.chartcolorstyle+xml"),
    (re.compile(r"^ppt/diagrams/data\d+\.xml$"), CT.DML_DIAGRAM_DATA),
    (re.compile(r"^ppt/diagrams/layout\d+\.xml$"), CT.DML_DIAGRAM_LAYOUT),
    (re.compile(r"^ppt/diagrams/quickStyle\d+\.xml$"), CT.DML_DIAGRAM_STYLE),
    (re.compile(r"^ppt/diagrams/colors\d+\.xml$"), CT.DML_DIAGRAM_COLORS),
    (re.compile(r"^ppt/diagrams/drawing\d+\.xml$"), "application/vnd.ms-office.drawingml.diagramDrawing+xml"),
]

_EXTENSION_TYPES: dict[str, str] = {
    "png": CT.PNG,
    "jpeg": CT.JPEG,
    "jpg": CT.JPEG,
    "gif": CT.GIF,
    "bmp": CT.BMP,
    "tif": CT.TIFF,
    "tiff": CT.TIFF,
    "emf": CT.X_EMF,
    "wmf": CT.X_WMF,
    "svg": "image/svg+xml",
    "wdp": "image/vnd.ms-photo",
    "mp4": CT.MP4,
    "mp3": "audio/mpeg",
    "xlsx": CT.SML_SHEET,
    "vml": CT.OFC_VML_DRAWING,
    "rels": CT.OPC_RELATIONSHIPS,
    "xml": CT.XML,
}


def extension_of(path: str) -> str:
    """Text after the last dot of the file name; ``_rels/.rels`` gives ``rels``."""
    name = posixpath.basename(path)
    return name.rpartition(".")[2].lower() if "." in name else ""


def _part_name(path: str) -> str:
    return "/" + path.lstrip("/")


class ContentTypeRegistry(XmlResource):
    """Defaults by extension and overrides by part name."""

    def __init__(self, store, path: str = CONTENT_TYPES_PATH) -> None:
        super().__init__(path, store)

    # --- lookups ---------------------------------------------------------

    @property
    def defaults(self) -> dict[str, str]:
        return {
            el.get("Extension", "").lower(): el.get("ContentType")
            for el in self.content.iterfind(f"{{{NS_CT}}}Default")
        }

    @property
    def overrides(self) -> dict[str, str]:
        return {
            el.get("PartName"): el.get("ContentType")
            for el in self.content.iterfind(f"{{{NS_CT}}}Override")
        }

    def type_for(self, path: str) -> Optional[str]:
        """Content type from the fixed table of known part names and extensions."""
        path = path.lstrip("/")
        for pattern, content_type in _PART_NAME_TYPES:
            if pattern.match(path):
                return content_type
        return _EXTENSION_TYPES.get(extension_of(path))

    def resolve(self, path: str) -> Optional[str]:
        """Content type the manifest declares for ``path``, or None."""
        part_name = _part_name(path)
        for el in self.content.iterfind(f"{{{NS_CT}}}Override"):
            if el.get("PartName", "").lower() == part_name.lower():
                return el.get("ContentType")
        return self.defaults.get(extension_of(path))

    def unresolved(self, paths) -> list[str]:
        """Parts from ``paths`` the manifest gives no content type."""
        return sorted(
            path for path in paths
            if path != CONTENT_TYPES_PATH and self.resolve(path) is None
        )

    # --- mutation --------------------------------------------------------

    def register_override(self, path: str, content_type: Optional[str] = None) -> bool:
        """Declare the content type of ``path``.

        Falls back to the known table when ``content_type`` is not given; a part
        of unknown type is left alone. No override is added when the extension
        default already yields the type, and an existing override for the same
        part is updated rather than duplicated. Returns True when the manifest
        changed.
        """
        content_type = content_type or self.type_for(path)
        if not content_type:
            logger.debug(f"No known content type for {path}, not registering")
            return False

        part_name = _part_name(path)
        for el in self.content.iterfind(f"{{{NS_CT}}}Override"):
            if el.get("PartName", "").lower() == part_name.lower():
                if el.get("ContentType") == content_type:
                    return False
                el.set("ContentType", content_type)
                self.save()
                return True

        if self.defaults.get(extension_of(path)) == content_type:
            return False

        child = etree.SubElement(self.content, f"{{{NS_CT}}}Override")
        child.set("PartName", part_name)
        child.set("ContentType", content_type)
        self.save()
        logger.debug(f"Registered content type {content_type} for {part_name}")
        return True

    def ensure_default(self, extension: str, content_type: str) -> bool:
        """Add a ``Default`` for ``extension`` when it has none."""
        extension = extension.lower()
        if extension in self.defaults:
            return False
        child = etree.Element(f"{{{NS_CT}}}Default")
        child.set("Extension", extension)
        child.set("ContentType", content_type)
        # Defaults precede overrides in files written by Office.
        first_override = self.content.find(f"{{{NS_CT}}}Override")
        if first_override is not None:
            first_override.addprevious(child)
        else:
            self.content.append(child)
        self.save()
        return True
