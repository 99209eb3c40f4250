"""Package parts and the relationship tables linking them.

A Resource is one part of the package: a path, its content, and the
relationships stored in its ``_rels/<name>.rels`` sidecar. Relationship targets
are kept as absolute in-package paths and only made relative again when the
sidecar is serialized, so renaming a part never disturbs its own table.
"""

import copy
import hashlib
import logging
import posixpath
import re
from dataclasses import dataclass, replace
from typing import Iterator, Optional

from lxml import etree

from src.opc_engine.constants import NS_R, NS_RELS, NSMAP
from src.opc_engine.errors import MissingPartError, UnresolvedRelationshipError
from src.opc_engine.naming import pattern_for

logger = logging.getLogger(__name__)

_RID = re.compile(r"^rId(\d+)$")


def serialize_xml(element) -> bytes:
    return etree.tostring(
        element, xml_declaration=True, encoding="UTF-8", standalone=True
    )


def rels_path_for(path: str) -> str:
    """Sidecar relationship part for ``path``: ``ppt/slides/_rels/slide1.xml.rels``."""
    directory, filename = posixpath.split(path)
    return posixpath.join(directory, "_rels", f"{filename}.rels")


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Relationship:
    """One entry of a relationship part.

    ``target`` is an absolute in-package path (no leading slash) for internal
    relationships and the raw URI for external ones.
    """

    r_id: str
    rel_type: str
    target: str
    is_external: bool = False


class RelationshipTable:
    """Ordered relationship-id → Relationship mapping for one source part."""

    def __init__(self, relationships: Optional[list[Relationship]] = None) -> None:
        self._by_id: dict[str, Relationship] = {}
        for rel in relationships or []:
            self._by_id[rel.r_id] = rel

    @classmethod
    def from_xml(cls, source_path: str, data: bytes) -> "RelationshipTable":
        base_dir = posixpath.dirname(source_path)
        root = etree.fromstring(data)
        rels = []
        for el in root.iterfind(f"{{{NS_RELS}}}Relationship"):
            is_external = el.get("TargetMode") == "External"
            target = el.get("Target", "")
            if not is_external:
                target = _resolve_target(base_dir, target)
            rels.append(
                Relationship(
                    r_id=el.get("Id"),
                    rel_type=el.get("Type", ""),
                    target=target,
                    is_external=is_external,
                )
            )
        return cls(rels)

    def to_xml(self, source_path: str) -> bytes:
        base_dir = posixpath.dirname(source_path)
        root = etree.Element(f"{{{NS_RELS}}}Relationships", nsmap={None: NS_RELS})
        for rel in self:
            el = etree.SubElement(root, f"{{{NS_RELS}}}Relationship")
            el.set("Id", rel.r_id)
            el.set("Type", rel.rel_type)
            if rel.is_external:
                el.set("Target", rel.target)
                el.set("TargetMode", "External")
            else:
                el.set("Target", posixpath.relpath(rel.target, base_dir or "."))
        return serialize_xml(root)

    def __iter__(self) -> Iterator[Relationship]:
        return iter(list(self._by_id.values()))

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, r_id: str) -> bool:
        return r_id in self._by_id

    def get(self, r_id: str) -> Optional[Relationship]:
        return self._by_id.get(r_id)

    def ids(self) -> list[str]:
        return list(self._by_id)

    def copy(self) -> "RelationshipTable":
        return RelationshipTable(list(self._by_id.values()))

    def next_id(self) -> str:
        """``rId`` plus one more than the highest numeric suffix in use."""
        numbers = [int(m.group(1)) for r_id in self._by_id if (m := _RID.match(r_id))]
        return f"rId{max(numbers, default=0) + 1}"

    def add(self, target: str, rel_type: str, is_external: bool = False) -> str:
        r_id = self.next_id()
        self._by_id[r_id] = Relationship(r_id, rel_type, target, is_external)
        return r_id

    def retarget(self, r_id: str, target: str) -> None:
        self._by_id[r_id] = replace(self._by_id[r_id], target=target)

    def find_by_type(self, rel_type: str) -> list[Relationship]:
        return [rel for rel in self if rel.rel_type == rel_type]


def _resolve_target(base_dir: str, target: str) -> str:
    if target.startswith("/"):
        return target.lstrip("/")
    return posixpath.normpath(posixpath.join(base_dir, target))


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

class Resource:
    """A package part with opaque (binary) content."""

    def __init__(self, path: str, store, content_types=None) -> None:
        self.path = path
        self.store = store
        self.content_types = content_types
        self.content_type = content_types.resolve(path) if content_types else None
        self.relationships = self._load_relationships()
        self.content = self._parse(store.read(path))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.path}>"

    @property
    def pattern_path(self) -> str:
        return pattern_for(self.path)

    @property
    def rels_path(self) -> str:
        return rels_path_for(self.path)

    # --- content ---------------------------------------------------------

    def _parse(self, data: bytes):
        return data

    def serialize(self) -> bytes:
        return self.content

    def identity_bytes(self) -> bytes:
        """Bytes that decide whether two parts hold the same content."""
        return self.serialize()

    def content_digest(self) -> str:
        return hashlib.sha256(self.identity_bytes()).hexdigest()

    def _load_relationships(self) -> RelationshipTable:
        rels_path = self.rels_path
        self._has_rels_part = self.store.exists(rels_path)
        if not self._has_rels_part:
            return RelationshipTable()
        return RelationshipTable.from_xml(self.path, self.store.read(rels_path))

    # --- lifecycle -------------------------------------------------------

    def save(self) -> None:
        """Write content and relationship sidecar through the owning store."""
        self.store.write(self.path, self.serialize())
        if self._has_rels_part or len(self.relationships):
            self.store.write(self.rels_path, self.relationships.to_xml(self.path))
            self._has_rels_part = True

    def clone(self) -> "Resource":
        """Deep copy with an independent content tree and relationship table."""
        twin = copy.copy(self)
        twin.content = copy.deepcopy(self.content)
        twin.relationships = self.relationships.copy()
        return twin

    def attach(self, store, content_types=None) -> None:
        """Move a clone onto another store before it is saved there."""
        self.store = store
        self.content_types = content_types
        self._has_rels_part = False

    def rename(self, new_base_name: str) -> None:
        """Change the file name, keeping the directory.

        Only valid on a clone that nothing in its package points at yet.
        """
        self.path = posixpath.join(posixpath.dirname(self.path), new_base_name)

    # --- relationships ---------------------------------------------------

    def add_resource(self, resource: "Resource", rel_type: str) -> str:
        """Relate this part to ``resource`` and return the new relationship id."""
        return self.relationships.add(resource.path, rel_type)

    def get_resource(self, r_id: str, resource_class: Optional[type] = None) -> "Resource":
        rel = self.relationships.get(r_id)
        if rel is None or rel.is_external:
            raise UnresolvedRelationshipError(self.path, r_id)
        return load_resource(
            self.store, rel.target, self.content_types,
            resource_class=resource_class, source=self.path,
        )

    def internal_relationships(self) -> list[Relationship]:
        return [rel for rel in self.relationships if not rel.is_external]

    def relink(self, path_map: dict[str, str]) -> None:
        """Point relationships at the new paths their targets were given."""
        for rel in self.internal_relationships():
            if rel.target in path_map:
                self.relationships.retarget(rel.r_id, path_map[rel.target])


class XmlResource(Resource):
    """A part whose content is an XML tree, queried with the package namespaces."""

    def _parse(self, data: bytes):
        return etree.fromstring(data)

    def serialize(self) -> bytes:
        return serialize_xml(self.content)

    def identity_bytes(self) -> bytes:
        return etree.tostring(self.content)

    def xpath(self, path: str) -> list:
        return self.content.xpath(path, namespaces=NSMAP)

    def relationship_ids_in_content(self) -> set[str]:
        """Every value held by an ``r:`` attribute anywhere in the tree."""
        found = set()
        prefix = f"{{{NS_R}}}"
        for el in self.content.iter():
            for name, value in el.attrib.items():
                if name.startswith(prefix):
                    found.add(value)
        return found


def load_resource(
    store,
    path: str,
    content_types=None,
    resource_class: Optional[type] = None,
    source: Optional[str] = None,
) -> Resource:
    """Load the part at ``path`` as the most specific Resource type."""
    from src.opc_engine.constants import SLIDE_PATH_RE
    from src.opc_engine.slide import Slide

    if not store.exists(path):
        raise MissingPartError(path, source)

    if resource_class is None:
        if SLIDE_PATH_RE.match(path):
            resource_class = Slide
        elif path.endswith(".xml"):
            resource_class = XmlResource
        else:
            resource_class = Resource
    return resource_class(path, store, content_types)
