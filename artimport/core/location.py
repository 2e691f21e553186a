"""
Location enhancement: enrich candidates with human-readable place tags.

Only runs when explicitly enabled. Lookups go through a per-run cache keyed
on coordinates rounded to 5 decimals (about 1m), so candidates sharing a spot
cost one geocode call. A geocoder that returns None or raises leaves the
candidate untouched: enrichment is optional and never fails an import.
"""

from typing import Dict, Optional, Tuple

from loguru import logger

from .collaborators import ReverseGeocoder
from .models import ImportCandidate, LocationInfo

DEFAULT_TAG_FIELDS = {
    "display_name": "location_display_name",
    "country": "location_country",
    "state": "location_state",
    "city": "location_city",
    "suburb": "location_suburb",
    "neighbourhood": "location_neighbourhood",
}


class LocationEnhancer:
    def __init__(self, geocoder: ReverseGeocoder, tag_fields: Optional[Dict[str, str]] = None):
        self.geocoder = geocoder
        self.tag_fields = {**DEFAULT_TAG_FIELDS, **(tag_fields or {})}
        self._cache: Dict[Tuple[float, float], Optional[LocationInfo]] = {}
        self.stats = {"from_cache": 0, "from_api": 0, "skipped_missing_coords": 0, "failed": 0}

    def _lookup(self, lat: float, lon: float) -> Optional[LocationInfo]:
        key = (round(lat, 5), round(lon, 5))
        if key in self._cache:
            self.stats["from_cache"] += 1
            return self._cache[key]

        try:
            info = self.geocoder.reverse_geocode(lat, lon)
        except Exception as e:
            logger.warning(f"Reverse geocode failed for ({lat}, {lon}): {e}")
            self.stats["failed"] += 1
            info = None
        else:
            self.stats["from_api"] += 1
            if info is None:
                self.stats["failed"] += 1

        self._cache[key] = info
        return info

    def enhance(self, candidate: ImportCandidate) -> ImportCandidate:
        if not candidate.has_coordinates:
            self.stats["skipped_missing_coords"] += 1
            return candidate

        info = self._lookup(candidate.location.lat, candidate.location.lon)
        if info is None:
            return candidate

        tags = dict(candidate.raw_tags)
        for attr, tag_key in self.tag_fields.items():
            value = getattr(info, attr, None)
            if value and tag_key not in tags:
                tags[tag_key] = str(value)

        if tags == candidate.raw_tags:
            return candidate
        return candidate.model_copy(update={"raw_tags": tags})
