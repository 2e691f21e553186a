"""
City of Vancouver public-art open-data mapper.

Input is the JSON export of the "public-art" dataset: a list of records (or
an Opendatasoft envelope with `results`/`records`). Coordinates come from
`geo_point_2d`, materials and types are normalized to a small controlled
vocabulary, and the registry id is kept as a tag so a record can be traced
back to the source.
"""

from typing import Any, Dict, List, Optional

from loguru import logger

from ..core.errors import MappingError
from ..core.models import ImportCandidate, LatLon
from .base import DataSourceMapper

VANCOUVER_BOUNDS = (49.20, 49.31, -123.25, -123.02)

MAX_TITLE_LENGTH = 200

MATERIALS = {
    "stainless steel": "steel",
    "mild steel": "steel",
    "corten steel": "steel",
    "weathering steel": "steel",
    "bronze": "bronze",
    "aluminum": "aluminium",
    "aluminium": "aluminium",
    "concrete": "concrete",
    "granite": "stone",
    "marble": "stone",
    "stone": "stone",
    "cedar": "wood",
    "wood": "wood",
    "glass": "glass",
    "ceramic": "ceramic",
    "fiberglass": "plastic",
    "fibreglass": "plastic",
}

ARTWORK_TYPES = {
    "statue": "sculpture",
    "wall mural": "mural",
    "public art installation": "installation",
    "memorial": "monument",
    "bas-relief": "relief",
    "mixed media": "mixed_media",
    "public art": "public_art",
}

CONDITIONS = {
    "in place": "good",
    "installed": "good",
    "good": "good",
    "fair": "fair",
    "poor": "poor",
    "removed": "removed",
    "demolished": "removed",
}


def normalize_material(material: str) -> str:
    normalized = material.lower().strip()
    for key, value in MATERIALS.items():
        if key in normalized:
            return value
    return normalized


def normalize_artwork_type(artwork_type: str) -> str:
    normalized = artwork_type.lower().strip()
    return ARTWORK_TYPES.get(normalized, normalized)


def normalize_condition(status: str) -> str:
    return CONDITIONS.get(status.lower().strip(), "unknown")


class VancouverMapper(DataSourceMapper):
    name = "vancouver"
    version = "1.0.0"
    source_name = "vancouver-opendata"
    bounds = VANCOUVER_BOUNDS

    def generate_import_id(self, record: Dict[str, Any]) -> str:
        registry_id = record.get("registryid")
        if registry_id is None or registry_id == "":
            raise MappingError("Vancouver record has no registryid", {"title": record.get("title_of_work")})
        return f"vancouver_{registry_id}"

    @staticmethod
    def _coordinates(record: Dict[str, Any]) -> Optional[LatLon]:
        point = record.get("geo_point_2d")
        if not isinstance(point, dict):
            return None
        lat, lon = point.get("lat"), point.get("lon")
        if isinstance(lat, (int, float)) and isinstance(lon, (int, float)) and not isinstance(lat, bool):
            return LatLon(lat=float(lat), lon=float(lon))
        return None

    @staticmethod
    def _title(record: Dict[str, Any]) -> Optional[str]:
        title = record.get("title_of_work")
        if not isinstance(title, str) or not title.strip():
            return None
        title = title.strip()
        if len(title) > MAX_TITLE_LENGTH:
            title = title[:MAX_TITLE_LENGTH - 3] + "..."
        return title

    def _tags(self, record: Dict[str, Any]) -> Dict[str, Optional[str]]:
        tags: Dict[str, Optional[str]] = {"source": self.source_name}

        material = record.get("primarymaterial")
        if isinstance(material, str) and material.strip():
            tags["material"] = normalize_material(material)

        artwork_type = record.get("type")
        if isinstance(artwork_type, str) and artwork_type.strip():
            tags["artwork_type"] = normalize_artwork_type(artwork_type)

        tags["start_date"] = self.tag_value(record.get("yearofinstallation"))
        tags["operator"] = self.tag_value(record.get("ownership"))
        tags["location"] = self.tag_value(record.get("locationonsite"))
        tags["neighbourhood"] = self.tag_value(record.get("neighbourhood") or record.get("geo_local_area"))
        tags["address"] = self.tag_value(record.get("siteaddress"))
        tags["registry_id"] = self.tag_value(record.get("registryid"))

        status = record.get("status")
        if isinstance(status, str) and status.strip():
            tags["condition"] = normalize_condition(status)

        return {k: v for k, v in tags.items() if v}

    def map_record(self, record: Dict[str, Any], index: int, batch_id: Optional[str] = None) -> ImportCandidate:
        try:
            source_id = self.generate_import_id(record)
        except MappingError:
            source_id = f"vancouver_row_{index}"

        photo = record.get("photourl")
        photo_urls = []
        if isinstance(photo, dict) and isinstance(photo.get("url"), str):
            photo_urls.append(photo["url"])

        artists = record.get("artists")
        raw_artists = None
        if isinstance(artists, str):
            raw_artists = artists
        elif isinstance(artists, list):
            raw_artists = [str(a) for a in artists if a is not None]

        return ImportCandidate(
            source_id=source_id,
            title=self._title(record),
            raw_artists=raw_artists,
            location=self._coordinates(record),
            raw_tags=self._tags(record),
            photo_urls=photo_urls,
            source_name=self.source_name,
            source_url=record.get("url") if isinstance(record.get("url"), str) else None,
            import_batch_id=batch_id,
        )

    def map_data(self, raw: Any, batch_id: Optional[str] = None) -> List[ImportCandidate]:
        if isinstance(raw, dict):
            raw = raw.get("results", raw.get("records"))
        if not isinstance(raw, list):
            raise MappingError("Vancouver input must be a list of public-art records")

        candidates = []
        for i, record in enumerate(raw):
            if not isinstance(record, dict):
                record = {}
            # Opendatasoft v1 wraps each row in {"fields": {...}}
            if isinstance(record.get("fields"), dict):
                record = record["fields"]
            candidates.append(self.map_record(record, i, batch_id))

        logger.info(f"[VancouverMapper] Mapped {len(candidates)} records")
        return candidates
