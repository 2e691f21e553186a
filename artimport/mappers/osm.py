"""
OpenStreetMap GeoJSON mapper.

Input is a GeoJSON FeatureCollection as produced by an Overpass export of
`tourism=artwork` objects. Point, Polygon, LineString and MultiPoint
geometries are reduced to their first coordinate (good enough to place a
mural on a building outline). Feature properties become tags, except the ones
that map onto candidate fields (name, artist_name, description).

A feature whose geometry can't be read still becomes a candidate, just
without coordinates, so that validation reports it rather than the mapper
silently dropping it.
"""

from typing import Any, Dict, List, Optional

from loguru import logger

from ..core.errors import MappingError
from ..core.models import ImportCandidate, LatLon
from .base import DataSourceMapper

FIELD_PROPERTIES = {"name", "artist_name", "artist", "description"}


def _first_position(geometry: Dict[str, Any]) -> Optional[List[Any]]:
    coords = geometry.get("coordinates")
    gtype = geometry.get("type")

    if gtype == "Point":
        return coords
    if gtype in ("LineString", "MultiPoint"):
        return coords[0] if coords else None
    if gtype == "Polygon":
        return coords[0][0] if coords and coords[0] else None

    logger.warning(f"Unsupported geometry type: {gtype}")
    return None


def extract_coordinates(geometry: Optional[Dict[str, Any]]) -> Optional[LatLon]:
    if not isinstance(geometry, dict):
        return None
    try:
        position = _first_position(geometry)
    except (TypeError, IndexError, KeyError):
        return None

    if not isinstance(position, (list, tuple)) or len(position) < 2:
        return None
    lon, lat = position[0], position[1]
    if isinstance(lon, bool) or isinstance(lat, bool):
        return None
    if not isinstance(lon, (int, float)) or not isinstance(lat, (int, float)):
        return None
    # GeoJSON order is [lon, lat]
    return LatLon(lat=float(lat), lon=float(lon))


def generate_title(properties: Dict[str, Any]) -> Optional[str]:
    name = properties.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()

    artwork_type = properties.get("artwork_type")
    if isinstance(artwork_type, str) and artwork_type.strip():
        material = properties.get("material")
        if isinstance(material, str) and material.strip():
            return f"{artwork_type.strip()} ({material.strip()})"
        return artwork_type.strip()

    return None


class OSMMapper(DataSourceMapper):
    name = "osm"
    version = "1.0.0"
    source_name = "openstreetmap"

    def generate_import_id(self, record: Dict[str, Any]) -> str:
        feature_id = record.get("id")
        if feature_id:
            return str(feature_id)
        props = record.get("properties") or {}
        if props.get("osm_type") and props.get("osm_id"):
            return f"{props['osm_type']}/{props['osm_id']}"
        raise MappingError("OSM feature has no id", {"properties": props})

    def _tags(self, feature_id: str, properties: Dict[str, Any]) -> Dict[str, str]:
        tags = {"source": self.source_name, "external_id": feature_id}
        for key, value in properties.items():
            if key in FIELD_PROPERTIES:
                continue
            text = self.tag_value(value)
            if text is not None:
                tags[key] = text
        return tags

    def map_feature(self, feature: Dict[str, Any], index: int, batch_id: Optional[str] = None) -> ImportCandidate:
        properties = feature.get("properties") or {}
        if not isinstance(properties, dict):
            properties = {}

        try:
            source_id = self.generate_import_id(feature)
        except MappingError:
            source_id = f"feature-{index}"

        artist = properties.get("artist_name") or properties.get("artist")
        description = properties.get("description")
        tags = self._tags(source_id, properties)
        if isinstance(description, str) and description.strip():
            tags.setdefault("description", description.strip())

        return ImportCandidate(
            source_id=source_id,
            title=generate_title(properties),
            raw_artists=artist if isinstance(artist, str) else None,
            location=extract_coordinates(feature.get("geometry")),
            raw_tags=tags,
            photo_urls=[],
            source_name=self.source_name,
            source_url=properties.get("website") if isinstance(properties.get("website"), str) else None,
            import_batch_id=batch_id,
        )

    def map_data(self, raw: Any, batch_id: Optional[str] = None) -> List[ImportCandidate]:
        if not isinstance(raw, dict) or raw.get("type") != "FeatureCollection":
            raise MappingError("OSM input must be a GeoJSON FeatureCollection")
        features = raw.get("features")
        if not isinstance(features, list):
            raise MappingError("OSM FeatureCollection has no 'features' list")

        candidates = []
        for i, feature in enumerate(features):
            if not isinstance(feature, dict):
                feature = {}
            candidates.append(self.map_feature(feature, i, batch_id))

        logger.info(f"[OSMMapper] Mapped {len(candidates)} features")
        return candidates
