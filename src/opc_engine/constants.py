"""Namespaces and well-known part names for PresentationML packages."""

import re

# ---------------------------------------------------------------------------
# Namespaces
# ---------------------------------------------------------------------------

NS_P = "http://schemas.openxmlformats.org/presentationml/2006/main"
NS_A = "http://schemas.openxmlformats.org/drawingml/2006/main"
NS_R = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
NS_RELS = "http://schemas.openxmlformats.org/package/2006/relationships"
NS_CT = "http://schemas.openxmlformats.org/package/2006/content-types"

NSMAP = {
    "p": NS_P,
    "a": NS_A,
    "r": NS_R,
    "rel": NS_RELS,
    "ct": NS_CT,
}

# ---------------------------------------------------------------------------
# Well-known parts
# ---------------------------------------------------------------------------

CONTENT_TYPES_PATH = "[Content_Types].xml"
PRESENTATION_PATH = "ppt/presentation.xml"

SLIDE_PATH_RE = re.compile(r"^ppt/slides/slide\d+\.xml$")

PLACEHOLDER = "{x}"

# Slide ids must be >= 256; master and layout ids share a space starting at 2^31.
MIN_SLIDE_ID = 256
MIN_MASTER_ID = 2147483648


def qn(tag: str) -> str:
    """Return Clark notation for a prefixed tag, e.g. ``p:sldId``."""
    prefix, local = tag.split(":")
    return f"{{{NSMAP[prefix]}}}{local}"
