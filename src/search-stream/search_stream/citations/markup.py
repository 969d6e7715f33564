"""Citation linking over rendered markup trees.

Rendered answers (markdown → paragraphs, lists, table cells …) are trees of
text and elements.  ``link_tree`` replaces citation markers found in text
nodes with ``Reference`` nodes and leaves every element where it was, so
one transform serves every rendering context.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Sequence, Union

from search_stream.citations.linker import CitationRef, linkify
from search_stream.models import Citation


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Element:
    tag: str
    children: tuple[Node, ...] = ()
    attrs: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Reference:
    citation_index: int
    label: str


Node = Union[Text, Element, Reference]


def link_tree(node: Node, citations: Sequence[Citation]) -> Node:
    """Return a copy of *node* with citation markers resolved.

    A bare text root that splits into several nodes is wrapped in a
    ``span`` element.
    """
    if isinstance(node, Element):
        return replace(node, children=link_nodes(node.children, citations))
    if isinstance(node, Text):
        linked = link_nodes((node,), citations)
        return linked[0] if len(linked) == 1 else Element(tag="span", children=linked)
    return node


def link_nodes(nodes: Sequence[Node], citations: Sequence[Citation]) -> tuple[Node, ...]:
    """Resolve markers in a sibling list.

    Adjacent text siblings are joined first: renderers often split one run
    of text into several nodes, which can cut a marker like ``[1, 2]`` in two.
    """
    result: list[Node] = []
    for node in _join_text_runs(nodes):
        if isinstance(node, Text):
            result.extend(_link_text(node.value, citations))
        elif isinstance(node, Element):
            result.append(replace(node, children=link_nodes(node.children, citations)))
        else:
            result.append(node)
    return tuple(result)


def plain_text(node: Node) -> str:
    """Flatten a tree to text, rendering references by their labels."""
    if isinstance(node, Text):
        return node.value
    if isinstance(node, Reference):
        return node.label
    return "".join(plain_text(child) for child in node.children)


def _join_text_runs(nodes: Sequence[Node]) -> list[Node]:
    joined: list[Node] = []
    for node in nodes:
        if isinstance(node, Text) and joined and isinstance(joined[-1], Text):
            joined[-1] = Text(joined[-1].value + node.value)
        else:
            joined.append(node)
    return joined


def _link_text(value: str, citations: Sequence[Citation]) -> list[Node]:
    if not value:
        return []
    return [
        Reference(citation_index=s.citation_index, label=s.display_label)
        if isinstance(s, CitationRef)
        else Text(s.text)
        for s in linkify(value, citations)
    ]
