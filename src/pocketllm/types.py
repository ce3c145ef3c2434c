"""
Core types for tokenization and generation.
"""

from typing_extensions import TypeAlias

Token: TypeAlias = int
Symbol: TypeAlias = str
SymbolPair: TypeAlias = tuple[Symbol, Symbol]
MergeRanks: TypeAlias = dict[SymbolPair, int]
Vocabulary: TypeAlias = dict[Symbol, Token]
