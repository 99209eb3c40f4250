from .archive_store import ArchiveStore
from .content_types import ContentTypeRegistry
from .errors import (
    MissingPartError,
    NameAllocationError,
    PackageError,
    PackageOpenError,
    UnresolvedRelationshipError,
)
from .naming import allocate, pattern_for
from .package import Package
from .resources import Relationship, RelationshipTable, Resource, XmlResource
from .slide import Slide

__all__ = [
    "ArchiveStore",
    "ContentTypeRegistry",
    "MissingPartError",
    "NameAllocationError",
    "PackageError",
    "PackageOpenError",
    "UnresolvedRelationshipError",
    "allocate",
    "pattern_for",
    "Package",
    "Relationship",
    "RelationshipTable",
    "Resource",
    "XmlResource",
    "Slide",
]
