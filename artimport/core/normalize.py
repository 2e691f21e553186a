"""String normalization for duplicate comparison.

Normalization is deterministic and never persisted: it only exists to compare
titles, artist names and tag values coming from different sources.
"""
import re
import unicodedata
from typing import Iterable, List, Optional, Union

DEFAULT_PUNCTUATION = "!\"#$%&'()*+,-./:;<=>?@[\\]^_`{|}~‘’“”–—«»¿¡"

_WHITESPACE_RX = re.compile(r"\s+")
_ARTIST_SEPARATOR_RX = re.compile(r"&|,|\band\b", re.IGNORECASE)


def _strip_diacritics(s: str) -> str:
    decomposed = unicodedata.normalize("NFKD", s)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(s: Optional[str], punctuation: Iterable[str] = DEFAULT_PUNCTUATION) -> str:
    """Canonicalize a string for comparison.

    - Lowercase
    - Strip diacritics (NFKD decomposition, combining marks removed)
    - Remove punctuation characters (replaced by a space so words don't fuse)
    - Collapse internal whitespace and trim

    Returns "" for None, empty or whitespace-only input.
    """
    if not s:
        return ""

    s = _strip_diacritics(s).lower()

    table = {ord(ch): " " for ch in punctuation}
    s = s.translate(table)

    return _WHITESPACE_RX.sub(" ", s).strip()


def split_raw_artists(raw: Union[str, List[str], None]) -> List[str]:
    """Split an artist field into display names (trimmed, not normalized)."""
    if raw is None:
        return []
    if isinstance(raw, str):
        parts = _ARTIST_SEPARATOR_RX.split(raw)
    else:
        parts = list(raw)
    return [p.strip() for p in parts if p and p.strip()]


def split_artists(raw: Union[str, List[str], None]) -> List[str]:
    """Split an artist field into normalized comparison tokens.

    A list is taken as already split; a string is split on "&", the word
    "and" and commas. Empty tokens are dropped.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        tokens = [normalize_text(p) for p in _ARTIST_SEPARATOR_RX.split(raw)]
    else:
        tokens = [normalize_text(p) for p in raw]
    return [t for t in tokens if t]


def coerce_tag_value(value) -> Optional[str]:
    """Explicitly convert a raw scalar to a tag string. None means drop the tag.

    Booleans become "yes"/"no" (OSM convention); containers are not tags.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (int, float, str)):
        text = str(value).strip()
        return text or None
    return None
