from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from .collaborators import ArchiveQuery
from .geo import haversine_meters, valid_location
from .models import ArtworkRecord, LatLon
from .normalize import normalize_text

DEFAULT_SEARCH_RADIUS_METERS = 100.0


class SpatialCandidateFinder:
    """Short-lists archive records near a location.

    The backing query may return a bounding-box superset; results are refined
    with the real haversine distance and ordered nearest first. Records staged
    during the current run are merged in so that later candidates in the same
    batch see earlier ones, even in dry runs or against a lagging archive.
    """

    def __init__(self, archive: ArchiveQuery):
        self.archive = archive
        self._staged: Dict[str, ArtworkRecord] = {}

    def stage(self, record: ArtworkRecord) -> None:
        self._staged[record.id] = record

    def with_staged(self, records: Iterable[ArtworkRecord]) -> List[ArtworkRecord]:
        """Archive results plus staged records; a staged copy replaces the archive's."""
        merged = {r.id: r for r in records}
        merged.update(self._staged)
        return list(merged.values())

    def find_candidates(
        self,
        location: LatLon,
        radius_meters: float = DEFAULT_SEARCH_RADIUS_METERS,
    ) -> List[ArtworkRecord]:
        if not valid_location(location):
            raise ValueError("find_candidates requires valid coordinates")

        # Both pending and approved records: no status filter.
        records = self.with_staged(self.archive.query_archive_near(location.lat, location.lon, radius_meters, None))

        in_range: List[Tuple[float, str, ArtworkRecord]] = []
        for record in records:
            if not valid_location(record.location):
                continue
            distance = haversine_meters(location, record.location)
            if distance <= radius_meters:
                in_range.append((distance, record.id, record))

        in_range.sort(key=lambda item: (item[0], item[1]))
        logger.debug(f"Spatial search at ({location.lat:.6f}, {location.lon:.6f}) r={radius_meters}m -> {len(in_range)} candidates")
        return [record for _, _, record in in_range]

    def staged_matching_title(self, title: Optional[str], limit: int) -> List[ArtworkRecord]:
        wanted = normalize_text(title)
        if not wanted:
            return []
        hits = [r for r in self._staged.values() if normalize_text(r.title) == wanted]
        return hits[:limit]
