"""
Byte-level helpers: the byte <-> visible glyph table used by BPE vocabularies
and conversion of pieces to displayable strings.
"""

import unicodedata
from functools import cache
from typing import Final

# bytes that already map to a printable latin-1 glyph of the same value
_PRINTABLE_RANGES: Final[tuple[tuple[int, int], ...]] = (
    (ord("!"), ord("~")),
    (ord("¡"), ord("¬")),
    (ord("®"), ord("ÿ")),
)


@cache
def byte_encoder() -> dict[int, str]:
    """
    Return the 256 entry byte -> glyph table.

    Printable bytes keep their own code point. Every other byte is shifted to
    256 + n, in byte order, so that no BPE symbol ever contains whitespace or a
    control character.
    """
    bs: list[int] = []
    for lo, hi in _PRINTABLE_RANGES:
        bs.extend(range(lo, hi + 1))
    cs = bs[:]
    n = 0
    for b in range(256):
        if b not in bs:
            bs.append(b)
            cs.append(256 + n)
            n += 1
    return {b: chr(c) for b, c in zip(bs, cs, strict=True)}


@cache
def byte_decoder() -> dict[str, int]:
    """Return the inverse glyph -> byte table."""
    return {glyph: b for b, glyph in byte_encoder().items()}


def bytes_to_glyphs(b: bytes) -> str:
    """Map raw bytes onto their glyph string."""
    table = byte_encoder()
    return "".join(table[x] for x in b)


def glyphs_to_bytes(s: str) -> bytes:
    """
    Map a glyph string back to raw bytes.

    Characters outside the table (e.g. special token text stored verbatim in a
    vocabulary) contribute their own UTF-8 bytes.
    """
    table = byte_decoder()
    out = bytearray()
    for ch in s:
        b = table.get(ch)
        if b is None:
            out.extend(ch.encode("utf-8"))
        else:
            out.append(b)
    return bytes(out)


def _escape_ctrl_chars(s: str) -> str:
    """Replace all Unicode control characters with their escape sequences."""
    cleaned = []
    for c in s:
        # control category codes vary: Cc, Cf, Cn etc.
        # so check via first character
        if unicodedata.category(c)[0] != "C":
            cleaned.append(c)
        else:
            cleaned.append(f"\\u{ord(c):04x}")
    return "".join(cleaned)


def render_piece(piece: str) -> str:
    """Return a decoded piece with control characters escaped, for logs."""
    return _escape_ctrl_chars(piece)
