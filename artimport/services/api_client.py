"""
HTTP adapter for the archive API.

One client implements every write-side and read-side collaborator the engine
needs (archive queries, artwork submission, tag patching, photo storage).
All transport and HTTP failures surface as CollaboratorError so the
orchestrator's circuit breaker can count them.
"""

from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from ..core.errors import CollaboratorError
from ..core.models import ArtworkRecord, ImportCandidate, PublicationStatus
from ..core.normalize import coerce_tag_value, split_raw_artists

USER_AGENT = "artimport/1.0.0"
DEFAULT_TIMEOUT = 30.0
NEARBY_LIMIT = 50


def _parse_location(item: Dict[str, Any]) -> Optional[Dict[str, float]]:
    lat, lon = item.get("lat"), item.get("lon")
    if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
        return {"lat": float(lat), "lon": float(lon)}
    return None


def parse_artwork(item: Dict[str, Any]) -> ArtworkRecord:
    raw_tags = item.get("tags_parsed") or item.get("tags") or {}
    tags = {}
    if isinstance(raw_tags, dict):
        for key, value in raw_tags.items():
            text = coerce_tag_value(value)
            if text is not None:
                tags[str(key)] = text

    artists = item.get("artists") or item.get("artist_names") or item.get("created_by")
    photos = item.get("photos") or []

    status = item.get("status")
    return ArtworkRecord(
        id=str(item["id"]),
        title=item.get("title"),
        location=_parse_location(item),
        artists=split_raw_artists(artists if isinstance(artists, (str, list)) else None),
        tags=tags,
        photos=[p if isinstance(p, str) else p.get("url", "") for p in photos if isinstance(p, (str, dict)) and p],
        publication_status=PublicationStatus.APPROVED if status == "approved" else PublicationStatus.PENDING,
        created_at=item.get("created_at"),
    )


def _artworks_from(payload: Any) -> List[Dict[str, Any]]:
    # Responses come either bare or wrapped as {"success": ..., "data": {...}}
    if isinstance(payload, dict):
        if isinstance(payload.get("artworks"), list):
            return payload["artworks"]
        data = payload.get("data")
        if isinstance(data, dict) and isinstance(data.get("artworks"), list):
            return data["artworks"]
        if isinstance(data, list):
            return data
    if isinstance(payload, list):
        return payload
    return []


class ArchiveApiClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"User-Agent": USER_AGENT, "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.Client(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise CollaboratorError("api", f"{method} {path} failed: {e}") from e

        if resp.status_code >= 400:
            raise CollaboratorError(
                "api",
                f"{method} {path} returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise CollaboratorError("api", f"{method} {path} returned invalid JSON", status_code=resp.status_code) from e

    # --- ArchiveQuery ---

    def query_archive_near(
        self,
        lat: float,
        lon: float,
        radius_meters: float,
        status: Optional[PublicationStatus] = None,
    ) -> List[ArtworkRecord]:
        params: Dict[str, Any] = {"lat": lat, "lon": lon, "radius": radius_meters, "limit": NEARBY_LIMIT}
        if status is not None:
            params["status"] = status.value
        payload = self._request("GET", "/api/artworks/nearby", params=params)
        records = [parse_artwork(item) for item in _artworks_from(payload) if isinstance(item, dict) and "id" in item]
        logger.debug(f"[ArchiveApiClient] {len(records)} artworks near ({lat}, {lon}) within {radius_meters}m")
        return records

    def query_archive_by_title(self, title: str, limit: int = 20) -> List[ArtworkRecord]:
        payload = self._request("GET", "/api/search", params={"q": title, "limit": limit})
        return [parse_artwork(item) for item in _artworks_from(payload) if isinstance(item, dict) and "id" in item]

    # --- ArtworkSubmitter ---

    def submit_artwork(self, candidate: ImportCandidate) -> str:
        body: Dict[str, Any] = {
            "artwork": {
                "title": candidate.title or "Untitled Artwork",
                "lat": candidate.location.lat if candidate.location else None,
                "lon": candidate.location.lon if candidate.location else None,
                "artists": split_raw_artists(candidate.raw_artists),
                "photos": [{"url": url} for url in candidate.photo_urls],
            },
            "tags": [{"label": k, "value": v} for k, v in candidate.raw_tags.items()],
            "source": {
                "name": candidate.source_name,
                "id": candidate.source_id,
                "url": candidate.source_url,
                "batch_id": candidate.import_batch_id,
            },
        }
        payload = self._request("POST", "/api/mass-import", json=body)

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data.get("artwork_id"):
            raise CollaboratorError("api", "Unexpected mass import response format")
        return str(data["artwork_id"])

    def patch_artwork_tags(self, artwork_id: str, tags: Dict[str, str]) -> None:
        self._request("PATCH", f"/api/artworks/{artwork_id}/tags", json={"tags": tags})

    # --- PhotoStore ---

    def store_photo(self, url: str, artwork_id: Optional[str] = None) -> str:
        body = {"url": url}
        path = f"/api/artworks/{artwork_id}/photos" if artwork_id else "/api/photos"
        payload = self._request("POST", path, json=body)
        if isinstance(payload, dict):
            data = payload.get("data", payload)
            if isinstance(data, dict) and data.get("url"):
                return str(data["url"])
        return url
