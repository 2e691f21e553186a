from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from ..core.models import ImportCandidate, LatLon
from ..core.normalize import coerce_tag_value

# (south, north, west, east)
Bounds = Tuple[float, float, float, float]


class DataSourceMapper(ABC):
    """
    Abstract base for source adapters.

    A mapper turns one source's raw export into ImportCandidates. It only
    reshapes data: no network calls, no duplicate checks. Tag values must come
    out as strings, so every mapper converts numbers and booleans itself.
    """
    name: str = "base"
    version: str = "1.0.0"
    bounds: Optional[Bounds] = None

    @abstractmethod
    def map_data(self, raw: Any, batch_id: Optional[str] = None) -> List[ImportCandidate]:
        """Map a whole raw export. Raises MappingError on a malformed export."""
        pass

    @abstractmethod
    def generate_import_id(self, record: Dict[str, Any]) -> str:
        pass

    def validate_bounds(self, lat: float, lon: float) -> bool:
        if self.bounds is None:
            return LatLon(lat=lat, lon=lon).is_valid()
        south, north, west, east = self.bounds
        return south <= lat <= north and west <= lon <= east

    @staticmethod
    def tag_value(value: Any) -> Optional[str]:
        return coerce_tag_value(value)
