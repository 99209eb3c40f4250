"""Exceptions raised by the package graph engine."""


class PackageError(Exception):
    """Base class for package graph failures."""


class PackageOpenError(PackageError):
    """The archive cannot be opened or lacks a required manifest part."""


class UnresolvedRelationshipError(PackageError):
    """A relationship id has no entry in the owning part's relationship table."""

    def __init__(self, source: str, r_id: str) -> None:
        super().__init__(f"Relationship '{r_id}' not found in {source}")
        self.source = source
        self.r_id = r_id


class MissingPartError(PackageError):
    """A relationship resolves to a path absent from the store."""

    def __init__(self, path: str, source: str | None = None) -> None:
        where = f" (referenced from {source})" if source else ""
        super().__init__(f"Part not found in package: {path}{where}")
        self.path = path
        self.source = source


class NameAllocationError(PackageError):
    """The store failed while probing for a free part name."""
