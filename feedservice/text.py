"""String helpers shared by the normalizer, converter and models."""

import html
import re
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup

from feedservice.config import LIST_DELIMITERS, SIZE_DELIMITERS

__all__ = [
    "sanitize",
    "sanitize_hard",
    "clean_html",
    "split_list",
    "split_sizes",
    "collate_strings",
    "unique_names",
    "fnv1a_64",
    "hash_key",
    "parse_price",
]

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_UINT64 = 0xFFFFFFFFFFFFFFFF

# Quotes, markdown-ish noise and control characters
_NOISE_RE = re.compile(r"[\"'`#*_“”‘’\x00-\x1f\x7f]")
_NON_LETTERS_RE = re.compile(r"[^a-zA-Z]+")
_WHITESPACE_RE = re.compile(r"\s+")
_LIST_SPLIT_RE = re.compile("[" + re.escape(LIST_DELIMITERS) + "]")
_SIZE_SPLIT_RE = re.compile("[" + re.escape(SIZE_DELIMITERS) + "]")
_PRICE_RE = re.compile(r"[^0-9.,\-]")


def sanitize(s: Optional[str]) -> str:
    """Unescape HTML entities and strip quotes, control characters and outer whitespace."""
    if not s:
        return ""
    s = html.unescape(str(s).strip())
    s = _NOISE_RE.sub("", s)
    return _WHITESPACE_RE.sub(" ", s).strip()


def sanitize_hard(s: Optional[str]) -> str:
    """Lower-case and collapse every run of non-letters into one space.

    Only used to build identity keys, never for display.
    """
    if not s:
        return ""
    s = html.unescape(str(s).strip())
    return _NON_LETTERS_RE.sub(" ", s.lower()).strip()


def clean_html(text: Optional[str]) -> str:
    """Turn an HTML fragment (feed descriptions often are) into plain text."""
    if not text:
        return ""
    if "<" not in text:
        return sanitize(text)
    soup = BeautifulSoup(text, "html.parser")
    return sanitize(soup.get_text(" ", strip=True))


def split_list(s: Optional[str]) -> List[str]:
    """Split a delimited free-text list into sanitized, non-empty tokens."""
    if not s:
        return []
    tokens = (sanitize(t) for t in _LIST_SPLIT_RE.split(str(s)))
    return [t for t in tokens if t]


def split_sizes(*values: Optional[str]) -> List[str]:
    """Split size fields into single size tokens, keeping first-seen order."""
    sizes: List[str] = []
    for value in values:
        if not value:
            continue
        for token in _SIZE_SPLIT_RE.split(str(value)):
            token = sanitize(token)
            if token and token not in sizes:
                sizes.append(token)
    return sizes


def collate_strings(*values: Optional[str]) -> str:
    """Return the first non-empty value, or an empty string."""
    for value in values:
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return ""


def unique_names(values: Iterable[str]) -> List[str]:
    """Drop empty and duplicate strings while preserving order."""
    seen = set()
    out: List[str] = []
    for v in values:
        if not v or v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


def fnv1a_64(data: str) -> int:
    """64-bit FNV-1a hash of the UTF-8 encoded string."""
    h = _FNV_OFFSET
    for byte in data.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & _UINT64
    return h


def hash_key(link: str) -> int:
    """Stable key for a retailer link.

    Digits are kept: product links often differ only by an article number.
    """
    return fnv1a_64(sanitize(link).lower())


def parse_price(value) -> Optional[float]:
    """Parse '1 299,00 SEK', '129.99', 129.99 ... into a two-decimal float.

    Returns None for empty, zero, negative or unparseable values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        price = float(value)
    else:
        clean = _PRICE_RE.sub("", str(value))
        if not clean:
            return None
        if "," in clean and "." in clean:
            # Whichever separator comes last is the decimal point
            if clean.rfind(",") > clean.rfind("."):
                clean = clean.replace(".", "").replace(",", ".")
            else:
                clean = clean.replace(",", "")
        elif "," in clean:
            clean = clean.replace(",", ".")
        try:
            price = float(clean)
        except ValueError:
            return None
    if price <= 0:
        return None
    return round(price, 2)
