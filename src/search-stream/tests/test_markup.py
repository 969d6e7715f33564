"""Tests for citation linking over rendered markup trees."""

from __future__ import annotations

from search_stream.citations.markup import (
    Element,
    Reference,
    Text,
    link_nodes,
    link_tree,
    plain_text,
)


class TestLinkTree:
    """Test link_tree()."""

    def test_paragraph_children_linked(self, citations):
        tree = Element("p", (Text("Rule applies [1]."),))
        linked = link_tree(tree, citations)
        assert linked == Element(
            "p", (Text("Rule applies ["), Reference(0, "1"), Text("].")), {}
        )

    def test_nested_elements_preserved(self, citations):
        tree = Element(
            "ul",
            (
                Element("li", (Text("first [1]"),)),
                Element("li", (Element("strong", (Text("bold [2]"),)),)),
            ),
        )
        linked = link_tree(tree, citations)
        assert [child.tag for child in linked.children] == ["li", "li"]
        strong = linked.children[1].children[0]
        assert strong.tag == "strong"
        assert Reference(1, "2") in strong.children

    def test_fragmented_marker_resolved(self, citations):
        tree = Element("td", (Text("See [1,"), Text(" 2]"), Text(" done")))
        linked = link_tree(tree, citations)
        refs = [n for n in linked.children if isinstance(n, Reference)]
        assert [r.citation_index for r in refs] == [0, 1]

    def test_text_root_wrapped_in_span(self, citations):
        linked = link_tree(Text("x [3]"), citations)
        assert isinstance(linked, Element)
        assert linked.tag == "span"
        assert Reference(2, "3") in linked.children

    def test_text_without_markers_unchanged(self, citations):
        assert link_tree(Text("nothing here"), citations) == Text("nothing here")

    def test_attributes_kept(self, citations):
        tree = Element("a", (Text("[1]"),), {"href": "#top"})
        assert link_tree(tree, citations).attrs == {"href": "#top"}

    def test_plain_text_round_trip(self, citations):
        tree = Element(
            "div",
            (
                Element("p", (Text("One [1, 9] two"),)),
                Text(" tail [Citation 2]"),
            ),
        )
        assert plain_text(link_tree(tree, citations)) == plain_text(tree)


class TestLinkNodes:
    """Test link_nodes()."""

    def test_existing_references_untouched(self, citations):
        nodes = (Reference(0, "1"), Text(" and [2]"))
        linked = link_nodes(nodes, citations)
        assert linked[0] == Reference(0, "1")
        assert linked[-2:] == (Reference(1, "2"), Text("]"))

    def test_empty_text_dropped(self, citations):
        assert link_nodes((Text(""),), citations) == ()
