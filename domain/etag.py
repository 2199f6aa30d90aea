"""Entity tag helpers for optimistic concurrency."""

import hashlib
from typing import Optional


def compute_etag(raw_ical: str) -> str:
    """Strong validator for locally stored calendar data."""
    digest = hashlib.md5(raw_ical.encode('utf-8')).hexdigest()
    return f'"{digest}"'


def normalize_etag(value: Optional[str]) -> str:
    """Opaque part of an ETag: weak prefix and surrounding quotes removed."""
    if not value:
        return ''
    value = value.strip()
    if value[:2].upper() == 'W/':
        value = value[2:]
    return value.strip('"')


def quote_etag(value: Optional[str]) -> str:
    """Render an ETag as a double-quoted strong validator."""
    opaque = normalize_etag(value)
    return f'"{opaque}"' if opaque else ''


def if_match_satisfied(stored_etag: Optional[str], if_match: Optional[str]) -> bool:
    """Evaluate an If-Match header against the stored ETag.

    A missing header always passes. ``*`` passes whenever the resource exists.
    """
    if if_match is None or not if_match.strip():
        return True
    if if_match.strip() == '*':
        return stored_etag is not None
    stored = normalize_etag(stored_etag)
    candidates = [normalize_etag(part) for part in if_match.split(',')]
    return bool(stored) and stored in candidates
