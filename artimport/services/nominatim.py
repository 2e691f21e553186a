import time
from typing import Optional

import httpx
from loguru import logger

from ..core.models import LocationInfo

NOMINATIM_URL = "https://nominatim.openstreetmap.org"
# Nominatim usage policy: at most one request per second
MIN_INTERVAL_SECONDS = 1.0


class NominatimGeocoder:
    """Reverse geocoder over the public Nominatim API.

    Returns None when the lookup fails; the location enhancer treats that as
    "no enrichment".
    """

    def __init__(
        self,
        base_url: str = NOMINATIM_URL,
        user_agent: str = "artimport/1.0.0",
        min_interval: float = MIN_INTERVAL_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.min_interval = min_interval
        self._last_call = 0.0
        self.client = httpx.Client(
            base_url=base_url,
            headers={"User-Agent": user_agent},
            timeout=10.0,
            transport=transport,
        )

    def close(self):
        self.client.close()

    def _throttle(self):
        wait = self.min_interval - (time.monotonic() - self._last_call)
        if wait > 0:
            time.sleep(wait)
        self._last_call = time.monotonic()

    def reverse_geocode(self, lat: float, lon: float) -> Optional[LocationInfo]:
        self._throttle()
        try:
            resp = self.client.get("/reverse", params={"lat": lat, "lon": lon, "format": "jsonv2", "addressdetails": 1})
        except httpx.HTTPError as e:
            logger.warning(f"[Nominatim] Request failed for ({lat}, {lon}): {e}")
            return None

        if resp.status_code != 200:
            logger.warning(f"[Nominatim] HTTP {resp.status_code} for ({lat}, {lon})")
            return None

        data = resp.json()
        if not isinstance(data, dict) or "error" in data:
            return None

        address = data.get("address") or {}
        return LocationInfo(
            display_name=data.get("display_name"),
            country=address.get("country"),
            state=address.get("state") or address.get("province"),
            city=address.get("city") or address.get("town") or address.get("village"),
            suburb=address.get("suburb"),
            neighbourhood=address.get("neighbourhood") or address.get("quarter"),
        )
