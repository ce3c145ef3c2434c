"""
Core Byte Pair Encoding (BPE) operations over glyph symbols.
"""

import logging
from collections.abc import Iterable

from .errors import ModelLoadError
from .types import MergeRanks, Symbol, SymbolPair

log = logging.getLogger(__name__)


def get_pairs(symbols: list[Symbol]) -> set[SymbolPair]:
    """
    Collect all adjacent symbol pairs of a word.

    Args:
        symbols (list[Symbol]): Current symbol sequence.

    Returns:
        set[SymbolPair]: Distinct consecutive pairs.
    """
    return {(symbols[i], symbols[i + 1]) for i in range(len(symbols) - 1)}


def bpe_merge(symbols: list[Symbol], target: SymbolPair) -> list[Symbol]:
    """
    Merge all non-overlapping occurrences of a target pair, scanning left to right.

    Args:
        symbols (list[Symbol]): Original symbol sequence.
        target (SymbolPair): The consecutive pair of symbols to merge.

    Returns:
        list[Symbol]: New symbol list with every target pair joined into one symbol.
    """
    first, second = target
    merged: list[Symbol] = []

    i = 0
    n = len(symbols)
    while i < n:
        if i < n - 1 and symbols[i] == first and symbols[i + 1] == second:
            merged.append(first + second)
            i += 2
        else:
            merged.append(symbols[i])
            i += 1

    return merged


def bpe(word: str, ranks: MergeRanks) -> list[Symbol]:
    """
    Split a glyph word into its final BPE symbols.

    Repeatedly merges the ranked pair with the lowest rank until no ranked pair
    is left or the word has collapsed into a single symbol. Ranks are unique,
    so the choice at every step does not depend on pair iteration order.

    :param word: Pre-token already mapped through the byte -> glyph table.
    :param ranks: Merge ranks, lower merges first.
    :return: Final symbol sequence.
    """
    if len(word) <= 1:
        return [word]

    symbols = list(word)
    while len(symbols) > 1:
        ranked = [pair for pair in get_pairs(symbols) if pair in ranks]
        if not ranked:
            break
        best = min(ranked, key=ranks.__getitem__)
        symbols = bpe_merge(symbols, best)

    return symbols


def parse_merges(lines: Iterable[str], source: str | None = None) -> MergeRanks:
    """
    Build merge ranks from the lines of a merge-rules file.

    The first non-blank line is a header and is skipped. Each following
    non-blank line holds two space separated symbols; its rank is its position
    among the rule lines. Repeated rules keep their latest rank.

    :param lines: Raw file lines.
    :param source: File path used in error messages.
    :raises ModelLoadError: If a rule line does not hold exactly two symbols.
    """
    ranks: MergeRanks = {}
    rule_lines = (line.rstrip("\r\n") for line in lines)
    rank = -1
    for lineno, line in enumerate(rule_lines, start=1):
        if not line:
            continue
        # header line
        if rank < 0:
            rank = 0
            continue
        parts = line.split(" ")
        if len(parts) != 2 or not all(parts):
            raise ModelLoadError(
                f"merge rule must hold two symbols: {line!r}", path=source, line=lineno
            )
        ranks[(parts[0], parts[1])] = rank
        rank += 1

    log.debug(f"parsed {len(ranks)} merge rules")
    return ranks
