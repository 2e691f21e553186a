"""
In-memory archive.

Implements every collaborator contract (archive queries, submission, tag
patching, photo storage) over a dict of ArtworkRecords. Used for offline dry
runs against a JSON snapshot of the archive and as the fake collaborator in
tests.
"""

import json
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from loguru import logger

from .geo import bounding_box, valid_location
from .models import ArtworkRecord, ImportCandidate, LatLon, PublicationStatus
from .normalize import normalize_text, split_raw_artists


class InMemoryArchive:
    def __init__(self, records: Optional[Iterable[ArtworkRecord]] = None, id_prefix: str = "artwork"):
        self.records: Dict[str, ArtworkRecord] = {}
        self.id_prefix = id_prefix
        self._next_id = 1
        self.calls: Dict[str, int] = {}
        for record in records or []:
            self.add(record)

    @classmethod
    def from_snapshot(cls, path: str) -> "InMemoryArchive":
        """Load a JSON list of archive records (or {"artworks": [...]})."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("artworks", [])
        records = [ArtworkRecord.model_validate(item) for item in data]
        logger.info(f"Loaded {len(records)} archive records from {path}")
        return cls(records)

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def add(self, record: ArtworkRecord) -> ArtworkRecord:
        self.records[record.id] = record
        return record

    def get(self, artwork_id: str) -> ArtworkRecord:
        return self.records[artwork_id]

    # --- ArchiveQuery ---

    def query_archive_near(
        self,
        lat: float,
        lon: float,
        radius_meters: float,
        status: Optional[PublicationStatus] = None,
    ) -> List[ArtworkRecord]:
        # Bounding-box superset only; the finder refines by real distance.
        self._count("query_archive_near")
        min_lat, max_lat, min_lon, max_lon = bounding_box(LatLon(lat=lat, lon=lon), radius_meters)

        hits = []
        for record in self.records.values():
            if status is not None and record.publication_status != status:
                continue
            if not valid_location(record.location):
                continue
            loc = record.location
            if min_lat <= loc.lat <= max_lat and min_lon <= loc.lon <= max_lon:
                hits.append(record)
        return hits

    def query_archive_by_title(self, title: str, limit: int = 20) -> List[ArtworkRecord]:
        self._count("query_archive_by_title")
        wanted = normalize_text(title)
        if not wanted:
            return []
        hits = [r for r in self.records.values() if normalize_text(r.title) == wanted]
        return sorted(hits, key=lambda r: r.id)[:limit]

    # --- ArtworkSubmitter ---

    def submit_artwork(self, candidate: ImportCandidate) -> str:
        self._count("submit_artwork")
        artwork_id = f"{self.id_prefix}-{self._next_id}"
        self._next_id += 1
        self.add(
            ArtworkRecord(
                id=artwork_id,
                title=candidate.title,
                location=candidate.location,
                artists=split_raw_artists(candidate.raw_artists),
                tags=dict(candidate.raw_tags),
                photos=list(candidate.photo_urls),
                publication_status=PublicationStatus.PENDING,
                created_at=datetime.now(timezone.utc),
            )
        )
        return artwork_id

    def patch_artwork_tags(self, artwork_id: str, tags: Dict[str, str]) -> None:
        self._count("patch_artwork_tags")
        record = self.records[artwork_id]
        merged = dict(record.tags)
        merged.update(tags)
        self.records[artwork_id] = record.model_copy(update={"tags": merged})

    # --- PhotoStore ---

    def store_photo(self, url: str, artwork_id: Optional[str] = None) -> str:
        self._count("store_photo")
        if artwork_id is not None:
            record = self.records[artwork_id]
            self.records[artwork_id] = record.model_copy(update={"photos": record.photos + [url]})
        return url
