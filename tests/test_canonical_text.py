"""Tests for CanonicalText grapheme and UTF-16 conversions."""

import pytest
from hypothesis import given, settings, strategies as st

from spanlight.text.canonical import CanonicalText, grapheme_starts


class TestGraphemeStarts:
    def test_ascii_is_one_grapheme_per_char(self):
        assert grapheme_starts("abc") == [0, 1, 2]

    def test_combining_mark_joins_previous(self):
        text = "e\u0301x"
        assert grapheme_starts(text) == [0, 2]

    def test_zwj_family_is_one_grapheme(self):
        family = "\U0001F468\u200d\U0001F469\u200d\U0001F467"
        assert grapheme_starts(family + "!") == [0, len(family)]

    def test_skin_tone_modifier_extends(self):
        wave = "\U0001F44B\U0001F3FD"
        assert grapheme_starts(wave) == [0]

    def test_flags_pair_regional_indicators(self):
        flags = "\U0001F1EF\U0001F1F5\U0001F1FA\U0001F1F8"
        assert grapheme_starts(flags) == [0, 2]

    def test_crlf_is_one_grapheme(self):
        assert grapheme_starts("a\r\nb") == [0, 1, 3]

    def test_mark_after_newline_starts_a_cluster(self):
        assert grapheme_starts("a\n\u0301") == [0, 1, 2]

    def test_hangul_jamo_sequences_join(self):
        assert grapheme_starts("\u1100\uac00") == [0]
        assert grapheme_starts("\uac00\u11a8x") == [0, 2]
        assert grapheme_starts("\u1100\u1161\u11a8") == [0]
        assert grapheme_starts("\u11a8\u1100") == [0, 1]

    def test_prepend_joins_following_character(self):
        assert grapheme_starts("\u0600\u0661x") == [0, 2]

    def test_thai_sara_am_is_a_spacing_mark(self):
        assert grapheme_starts("\u0e01\u0e33") == [0]


class TestCanonicalText:
    def test_text_is_nfc_normalized(self):
        canonical = CanonicalText("e\u0301")
        assert canonical.text == "\u00e9"
        assert len(canonical) == 1

    def test_non_string_becomes_empty(self):
        assert CanonicalText(None).text == ""

    def test_grapheme_index_for_offset(self):
        canonical = CanonicalText("a\U0001F44B\U0001F3FDb")
        assert canonical.grapheme_index_for_offset(0) == 0
        assert canonical.grapheme_index_for_offset(1) == 1
        assert canonical.grapheme_index_for_offset(2) == 1
        assert canonical.grapheme_index_for_offset(3) == 2
        assert canonical.grapheme_index_for_offset(99) == canonical.grapheme_length

    def test_slice_graphemes(self):
        canonical = CanonicalText("a\U0001F44B\U0001F3FDb")
        assert canonical.slice_graphemes(1, 2) == "\U0001F44B\U0001F3FD"
        assert canonical.slice_graphemes(2) == "b"

    def test_utf16_round_trip_with_astral_characters(self):
        canonical = CanonicalText("x\U0001F3A5y")
        assert canonical.utf16_length == 4
        assert canonical.to_utf16(2) == 3
        assert canonical.from_utf16(3) == 2

    def test_from_utf16_inside_surrogate_pair_rounds_down(self):
        canonical = CanonicalText("x\U0001F3A5y")
        assert canonical.from_utf16(2) == 1

    def test_offsets_are_clamped(self):
        canonical = CanonicalText("abc")
        assert canonical.to_utf16(-3) == 0
        assert canonical.to_utf16(10) == 3
        assert canonical.from_utf16(-1) == 0
        assert canonical.from_utf16(10) == 3


@pytest.mark.property
@given(text=st.text(max_size=30))
@settings(max_examples=150, deadline=None)
def test_utf16_offsets_round_trip(text):
    canonical = CanonicalText(text)
    for offset in range(len(canonical.text) + 1):
        assert canonical.from_utf16(canonical.to_utf16(offset)) == offset


@pytest.mark.property
@given(text=st.text(min_size=1, max_size=30))
@settings(max_examples=150, deadline=None)
def test_grapheme_slices_rebuild_text(text):
    canonical = CanonicalText(text)
    pieces = [canonical.slice_graphemes(i, i + 1) for i in range(canonical.grapheme_length)]
    assert "".join(pieces) == canonical.text
