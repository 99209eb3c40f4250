"""Slide parts: dependency closure and text templating."""

import logging
from collections import deque
from typing import Callable, Mapping, Union

from src.opc_engine.constants import qn
from src.opc_engine.errors import MissingPartError
from src.opc_engine.resources import Resource, XmlResource

logger = logging.getLogger(__name__)

TemplateData = Union[Mapping[str, object], Callable[[int], Mapping[str, object]]]


class Slide(XmlResource):
    """A ``ppt/slides/slideN.xml`` part."""

    def get_resources(self) -> list[Resource]:
        """Every part reachable from this slide through internal relationships.

        Breadth-first from the slide's own relationships, in discovery order,
        each path once, the slide itself excluded. A relationship pointing at a
        part missing from the store is skipped with a warning.
        """
        seen = {self.path}
        found: list[Resource] = []
        queue: deque[Resource] = deque([self])
        while queue:
            owner = queue.popleft()
            for rel in owner.internal_relationships():
                if rel.target in seen:
                    continue
                seen.add(rel.target)
                try:
                    resource = owner.get_resource(rel.r_id)
                except MissingPartError:
                    logger.warning(
                        f"{owner.path} {rel.r_id} points at missing part {rel.target}, skipping"
                    )
                    continue
                found.append(resource)
                queue.append(resource)
        return found

    def text(self) -> str:
        """Visible text of the slide, one paragraph per line."""
        lines = []
        for paragraph in self.content.iter(qn("a:p")):
            lines.append("".join(t.text or "" for t in paragraph.iter(qn("a:t"))))
        return "\n".join(line for line in lines if line)

    def template(
        self,
        data: TemplateData,
        index: int = 0,
        open_tag: str = "{{",
        close_tag: str = "}}",
    ) -> int:
        """Replace ``{{key}}`` placeholders in the slide text.

        ``data`` is either a mapping or a callable taking the slide index and
        returning one. Returns the number of replacements made; the slide is
        saved when that is non-zero.
        """
        values = data(index) if callable(data) else data
        if not values:
            return 0
        tokens = {f"{open_tag}{key}{close_tag}": str(value) for key, value in values.items()}

        count = 0
        for paragraph in self.content.iter(qn("a:p")):
            count += _template_paragraph(paragraph, tokens)

        if count:
            self.save()
            logger.debug(f"{self.path}: {count} placeholder(s) replaced")
        return count


def _template_paragraph(paragraph, tokens: dict[str, str]) -> int:
    nodes = list(paragraph.iter(qn("a:t")))
    if not nodes:
        return 0
    joined = "".join(node.text or "" for node in nodes)
    present = [token for token in tokens if token in joined]
    if not present:
        return 0

    # A placeholder broken across runs only exists in the joined text; fold the
    # paragraph into its first run so it can be replaced there.
    split = any(
        joined.count(token) != sum((node.text or "").count(token) for node in nodes)
        for token in present
    )
    if split:
        nodes[0].text = joined
        for node in nodes[1:]:
            node.text = ""
        nodes = nodes[:1]

    count = 0
    for node in nodes:
        text = node.text or ""
        for token in present:
            hits = text.count(token)
            if hits:
                text = text.replace(token, tokens[token])
                count += hits
        node.text = text
    return count
