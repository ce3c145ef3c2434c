"""Unit tests for the BPE merge helpers and merge-rule parsing."""

import pytest

from pocketllm._bpe import bpe, bpe_merge, get_pairs, parse_merges
from pocketllm._bytes import byte_decoder, byte_encoder, bytes_to_glyphs, glyphs_to_bytes
from pocketllm.errors import ModelLoadError


# Byte glyph table
# ---------------------------------------------------------------------------


def test_byte_table_is_bijective():
    """All 256 bytes map to distinct glyphs and back."""
    enc = byte_encoder()
    assert len(set(enc.values())) == 256
    assert all(byte_decoder()[g] == b for b, g in enc.items())


def test_whitespace_glyphs():
    """Space and newline map to the shifted GPT-2 glyphs."""
    assert bytes_to_glyphs(b" \n") == "ĠĊ"
    assert glyphs_to_bytes("ĠĊ") == b" \n"


def test_glyphs_outside_table_keep_their_bytes():
    """Verbatim special-token text decodes to its own UTF-8 bytes."""
    assert glyphs_to_bytes("<|endoftext|>") == b"<|endoftext|>"


# Merging
# ---------------------------------------------------------------------------


def test_get_pairs():
    """Adjacent pairs are collected once each."""
    assert get_pairs(["a", "b", "a", "b"]) == {("a", "b"), ("b", "a")}


def test_bpe_merge_is_non_overlapping():
    """Overlapping occurrences merge left to right."""
    assert bpe_merge(["a", "a", "a"], ("a", "a")) == ["aa", "a"]


def test_bpe_lowest_rank_first():
    """The lowest-ranked pair merges before higher-ranked ones."""
    ranks = {("b", "c"): 0, ("a", "b"): 1}
    assert bpe("abc", ranks) == ["a", "bc"]


def test_bpe_full_merge():
    """Chained rules collapse the word into one symbol."""
    ranks = {("h", "e"): 0, ("l", "l"): 1, ("he", "ll"): 2, ("hell", "o"): 3}
    assert bpe("hello", ranks) == ["hello"]


def test_bpe_short_words():
    """Empty and single-glyph words are returned as is."""
    assert bpe("", {}) == [""]
    assert bpe("a", {("a", "b"): 0}) == ["a"]


# Merge-rule parsing
# ---------------------------------------------------------------------------


def test_parse_merges_skips_header_and_blank_lines():
    """Ranks count only rule lines after the header."""
    ranks = parse_merges(["", "#version: 0.2\n", "a b\n", "\n", "ab c\n"])
    assert ranks == {("a", "b"): 0, ("ab", "c"): 1}


def test_parse_merges_duplicate_keeps_latest_rank():
    """A repeated rule takes its last position."""
    ranks = parse_merges(["#v", "a b", "c d", "a b"])
    assert ranks[("a", "b")] == 2


def test_parse_merges_rejects_bad_lines():
    """Rules with more or fewer than two symbols raise ModelLoadError."""
    with pytest.raises(ModelLoadError) as exc:
        parse_merges(["#v", "a b", "a b c"], source="merges.txt")
    assert exc.value.line == 3
    assert exc.value.path == "merges.txt"
