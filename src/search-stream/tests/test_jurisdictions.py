"""Tests for the jurisdiction catalog and @mention parsing."""

from __future__ import annotations

import pytest

from search_stream.jurisdictions import (
    US_STATES,
    display_name,
    filter_jurisdictions,
    get_jurisdiction,
    is_multi_state,
    match_jurisdiction,
    parse_mentions,
)


class TestCatalog:
    """Test catalog lookups."""

    def test_fifty_states(self):
        assert len(US_STATES) == 50
        assert len({s.code for s in US_STATES}) == 50

    def test_lookup(self):
        assert get_jurisdiction("co").name == "Colorado"
        assert get_jurisdiction("ALL").name == "Compare All States"
        assert get_jurisdiction("ZZ") is None

    def test_display_name_falls_back_to_code(self):
        assert display_name("NV") == "Nevada"
        assert display_name("ZZ") == "ZZ"


class TestMatchJurisdiction:
    """Test match_jurisdiction() precedence."""

    @pytest.mark.parametrize(
        "text,code",
        [
            ("co", "CO"),
            ("California", "CA"),
            ("newyork", "NY"),
            ("cal", "CA"),
            ("mass", "MA"),
            ("dakota", "ND"),
        ],
    )
    def test_matches(self, text: str, code: str):
        assert match_jurisdiction(text).code == code

    def test_exact_code_beats_prefix(self):
        # Iowa's code wins over names that merely contain "ia" (California, Virginia)
        assert match_jurisdiction("ia").code == "IA"

    def test_no_match(self):
        assert match_jurisdiction("atlantis") is None
        assert match_jurisdiction("") is None


class TestParseMentions:
    """Test parse_mentions()."""

    def test_mentions_removed_and_resolved(self):
        result = parse_mentions("notice period @california and @nv please")
        assert result.clean_query == "notice period and please"
        assert result.codes == ("CA", "NV")
        assert [m.raw for m in result.mentions] == ["@california", "@nv"]

    def test_codes_deduplicated_in_order(self):
        result = parse_mentions("@texas @co @tx rent")
        assert result.codes == ("TX", "CO")
        assert len(result.mentions) == 3

    def test_unknown_mention_left_in_query(self):
        result = parse_mentions("ask @atlantis about rent")
        assert result.clean_query == "ask @atlantis about rent"
        assert result.codes == ()

    def test_positions_in_clean_query(self):
        result = parse_mentions("a @co b @nv")
        assert [m.position for m in result.mentions] == [2, 5]

    def test_no_mentions(self):
        result = parse_mentions("  plain   query ")
        assert result.clean_query == "plain query"
        assert result.mentions == ()


class TestFilterJurisdictions:
    """Test filter_jurisdictions() ranking."""

    def test_empty_returns_first_states(self):
        assert [s.code for s in filter_jurisdictions("", limit=3)] == ["AL", "AK", "AZ"]

    def test_exact_before_prefix_before_contains(self):
        codes = [s.code for s in filter_jurisdictions("ne")]
        assert codes[0] == "NE"
        assert codes.index("NV") < codes.index("ME")

    def test_limit(self):
        assert len(filter_jurisdictions("a", limit=5)) == 5


class TestIsMultiState:
    """Test mode selection."""

    def test_modes(self):
        assert is_multi_state(["CO", "NV"])
        assert not is_multi_state(["CO"])
        assert not is_multi_state([])
        assert not is_multi_state(["ALL", "CO"])
