"""Non-destructive tag merge.

The existing record is authoritative: an import may add keys the archive does
not have (or whose value is blank) but never changes a value that is already
there. Conflicting incoming values end up in `discarded` so the caller can log
them.
"""
from typing import Dict

from .models import TagMergeDelta
from .normalize import normalize_text


def merge_tags(existing: Dict[str, str], incoming: Dict[str, str]) -> TagMergeDelta:
    delta = TagMergeDelta()

    for key, value in incoming.items():
        current = existing.get(key)

        if current is None or not current.strip():
            delta.added[key] = value
        elif normalize_text(current) == normalize_text(value):
            delta.unchanged[key] = current
        else:
            delta.kept_existing[key] = current
            delta.discarded[key] = value

    return delta
