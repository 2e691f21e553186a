from typing import Dict, List, Optional, Protocol, runtime_checkable

from .models import ArtworkRecord, ImportCandidate, LocationInfo, PublicationStatus


class ArtworkSubmitter(Protocol):
    def submit_artwork(self, candidate: ImportCandidate) -> str:
        """Create a new pending artwork and return its id."""
        ...

    def patch_artwork_tags(self, artwork_id: str, tags: Dict[str, str]) -> None:
        """Write only the given (new) tags onto an existing artwork."""
        ...


class PhotoStore(Protocol):
    def store_photo(self, url: str, artwork_id: Optional[str] = None) -> str: ...


class ReverseGeocoder(Protocol):
    def reverse_geocode(self, lat: float, lon: float) -> Optional[LocationInfo]: ...


class ArchiveQuery(Protocol):
    def query_archive_near(
        self,
        lat: float,
        lon: float,
        radius_meters: float,
        status: Optional[PublicationStatus] = None,
    ) -> List[ArtworkRecord]: ...


@runtime_checkable
class TitleSearchable(Protocol):
    """Optional archive capability used when a candidate has no coordinates."""

    def query_archive_by_title(self, title: str, limit: int = 20) -> List[ArtworkRecord]: ...
