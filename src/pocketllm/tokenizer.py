"""
Byte-level BPE tokenizer backed by a vocabulary JSON file and a merge-rules file.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Self

import regex as re
from typing_extensions import deprecated

from ._bpe import bpe, parse_merges
from ._bytes import bytes_to_glyphs, glyphs_to_bytes
from .errors import ConfigError, ModelLoadError
from .pattern import TokenPattern
from .types import MergeRanks, Symbol, Token, Vocabulary

log = logging.getLogger(__name__)

VOCAB_FILENAME: Final[str] = "20B_tokenizer_vocab.json"
MERGES_FILENAME: Final[str] = "20B_tokenizer_merges.txt"
DEFAULT_SENTINEL: Final[str] = "<|endoftext|>"
# id returned for symbols missing from the vocabulary
UNKNOWN_TOKEN: Final[Token] = 0
# newline id of llama-style vocabularies, used when "\n" is not a single token
FALLBACK_NEWLINE_TOKEN: Final[Token] = 13


@dataclass(frozen=True)
class TokenizerConfig:
    """Locations of the vocabulary and merge-rules files."""

    vocab: Path
    merges: Path

    @classmethod
    def from_directory(cls, directory: str | Path) -> Self:
        """Resolve the bundled 20B tokenizer files inside ``directory``."""
        root = Path(directory)
        return cls(vocab=root / VOCAB_FILENAME, merges=root / MERGES_FILENAME)


class Tokenizer:
    """
    Reversible text <-> token id codec using byte-level BPE.

    Text is split by a pre-tokenization regex, each chunk is mapped byte by
    byte onto visible glyphs, merged with BPE and looked up in the vocabulary.
    Both directions are total: unknown symbols encode to ``UNKNOWN_TOKEN`` and
    unknown ids decode to nothing.
    """

    def __init__(
        self,
        vocab: Vocabulary,
        ranks: MergeRanks,
        pattern: str | None = None,
        bos_token: str = DEFAULT_SENTINEL,
        eos_token: str = DEFAULT_SENTINEL,
    ) -> None:
        self.encoder: Vocabulary = dict(vocab)
        self.decoder: dict[Token, Symbol] = {tok: piece for piece, tok in vocab.items()}
        self.ranks: MergeRanks = dict(ranks)
        self.pat: str = pattern or TokenPattern.GPT2.value
        try:
            self.compiled_pat: re.Pattern[str] = re.compile(self.pat)
        except re.error as e:
            raise ConfigError(f"invalid regex pattern: {e}", field="pattern") from e
        self.bos_id: Token = self.encoder.get(bos_token, UNKNOWN_TOKEN)
        self.eos_id: Token = self.encoder.get(eos_token, UNKNOWN_TOKEN)
        # pre-token -> bpe symbols
        self._cache: dict[str, list[Symbol]] = {}

        newline = self.encode("\n")
        self.newline_id: Token = (
            newline[0] if len(newline) == 1 else FALLBACK_NEWLINE_TOKEN
        )

    @classmethod
    def from_files(
        cls,
        vocab_path: str | Path,
        merges_path: str | Path,
        pattern: str | None = None,
    ) -> Self:
        """
        Load a tokenizer from a vocabulary JSON file and a merge-rules file.

        :param vocab_path: JSON object mapping string pieces to token ids.
        :param merges_path: Newline-delimited merge rules with a header line.
        :param pattern: Optional pre-tokenization regex, GPT-2 by default.
        :raises ModelLoadError: If a file is missing or malformed.
        """
        vocab = _load_vocab(Path(vocab_path))
        ranks = _load_merges(Path(merges_path))
        log.info(
            f"tokenizer loaded: {len(vocab)} vocabulary entries, {len(ranks)} merge rules"
        )
        return cls(vocab, ranks, pattern=pattern)

    @classmethod
    def from_config(cls, config: TokenizerConfig, pattern: str | None = None) -> Self:
        """Load a tokenizer from a :class:`TokenizerConfig`."""
        return cls.from_files(config.vocab, config.merges, pattern=pattern)

    def vocab_size(self) -> int:
        """Return the number of entries in the vocabulary."""
        return len(self.encoder)

    def pre_tokenize(self, text: str) -> list[str]:
        """Split text into pre-tokens and map each onto its glyph string."""
        return [
            bytes_to_glyphs(m.group(0).encode("utf-8"))
            for m in self.compiled_pat.finditer(text)
        ]

    def bpe(self, word: str) -> list[Symbol]:
        """Return the BPE symbols of a single glyph word (memoized)."""
        cached = self._cache.get(word)
        if cached is None:
            cached = bpe(word, self.ranks)
            self._cache[word] = cached
        return list(cached)

    def tokenize(self, text: str) -> list[Symbol]:
        """Return the BPE symbols of ``text`` before vocabulary lookup."""
        symbols: list[Symbol] = []
        for word in self.pre_tokenize(text):
            symbols.extend(self.bpe(word))
        return symbols

    def encode(self, text: str) -> list[Token]:
        """Encode text into token ids; unknown symbols map to ``UNKNOWN_TOKEN``."""
        return [self.encoder.get(sym, UNKNOWN_TOKEN) for sym in self.tokenize(text)]

    def decode(self, tokens: list[Token]) -> str:
        """
        Decode token ids back into text.

        Unknown ids contribute nothing. Byte sequences that are not valid UTF-8
        (a multi-byte character split across tokens) are replaced with U+FFFD.
        """
        glyphs = "".join(self.decoder.get(tok, "") for tok in tokens)
        return glyphs_to_bytes(glyphs).decode("utf-8", errors="replace")

    def id_to_piece(self, token: Token) -> str:
        """Return the raw vocabulary piece of ``token`` or an empty string."""
        return self.decoder.get(token, "")

    def piece_to_id(self, piece: str) -> Token:
        """Return the id of a raw vocabulary piece or ``UNKNOWN_TOKEN``."""
        return self.encoder.get(piece, UNKNOWN_TOKEN)

    def prepend_bos(self, tokens: list[Token]) -> list[Token]:
        """Insert the beginning-of-sequence token at the front."""
        return [self.bos_id, *tokens]

    @deprecated("Use `prepend_bos()`; the BOS token goes in front of the sequence.")
    def append_bos(self, tokens: list[Token]) -> list[Token]:
        """Insert the beginning-of-sequence token at the front."""
        return self.prepend_bos(tokens)

    def append_eos(self, tokens: list[Token]) -> list[Token]:
        """Add the end-of-sequence token at the back."""
        return [*tokens, self.eos_id]

    def strip_bos(self, tokens: list[Token]) -> list[Token]:
        """Remove a leading BOS token if there is one."""
        if tokens and tokens[0] == self.bos_id:
            return tokens[1:]
        return list(tokens)

    def strip_eos(self, tokens: list[Token]) -> list[Token]:
        """Remove a trailing EOS token if there is one."""
        if tokens and tokens[-1] == self.eos_id:
            return tokens[:-1]
        return list(tokens)


def _load_vocab(path: Path) -> Vocabulary:
    """Read and validate a piece -> id vocabulary JSON file."""
    if not path.exists():
        raise ModelLoadError("vocabulary file does not exist", path=str(path))

    log.info(f"loading vocabulary from {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ModelLoadError(
            f"vocabulary is not valid JSON: {e.msg}", path=str(path), line=e.lineno
        ) from e

    if not isinstance(raw, dict):
        raise ModelLoadError("vocabulary must be a JSON object", path=str(path))

    vocab: Vocabulary = {}
    for piece, tok in raw.items():
        # bool is an int subclass but never a valid id
        if not isinstance(tok, int) or isinstance(tok, bool) or tok < 0:
            raise ModelLoadError(
                f"token id for {piece!r} is not a non-negative integer: {tok!r}",
                path=str(path),
            )
        vocab[piece] = tok
    return vocab


def _load_merges(path: Path) -> MergeRanks:
    """Read merge ranks from a merge-rules file."""
    if not path.exists():
        raise ModelLoadError("merges file does not exist", path=str(path))

    log.info(f"loading merge rules from {path}")
    with path.open("r", encoding="utf-8") as f:
        return parse_merges(f, source=str(path))
