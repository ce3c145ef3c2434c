"""Named pre-tokenization patterns for byte-level BPE vocabularies."""

from enum import Enum

from .errors import ConfigError


class TokenPattern(str, Enum):
    """
    Regexes splitting text into pre-tokens before BPE.

    ``GPT2`` is the split the GPT-NeoX 20B vocabulary (and therefore RWKV) was
    built with. ``LLAMA3`` keeps digits in groups of three and newlines apart,
    for vocabularies trained that way (https://github.com/ggerganov/llama.cpp).
    """

    GPT2 = (
        r"'(?:[sdmt]|ll|ve|re)|"
        r" ?\p{L}+|"
        r" ?\p{N}+|"
        r" ?[^\s\p{L}\p{N}]+|"
        r"\s+(?!\S)|"
        r"\s+"
    )

    LLAMA3 = (
        r"(?:'[sS]|'[tT]|'[rR][eE]|'[vV][eE]|'[mM]|'[lL][lL]|'[dD])|"
        r"[^\r\n\p{L}\p{N}]?\p{L}+|"
        r"\p{N}{1,3}|"
        r" ?[^\s\p{L}\p{N}]+[\r\n]*|"
        r"\s*[\r\n]+|"
        r"\s+(?!\S)|"
        r"\s+"
    )

    @classmethod
    def get(cls, name: str) -> str:
        """Return the regex registered under ``name`` (case-insensitive)."""
        key = name.strip().upper()
        if key not in cls.__members__:
            raise ConfigError(
                f"unknown pattern {name!r} (available: {', '.join(list_patterns())})",
                field="pattern",
            )
        return cls[key].value


def list_patterns() -> list[str]:
    """Return the names of the built-in patterns."""
    return list(TokenPattern.__members__)
