"""
Pytest configuration and shared fixtures for artimport tests
"""

import math
from typing import Dict, List, Optional

import pytest

from artimport.core.archive import InMemoryArchive
from artimport.core.config import ENV_OVERRIDES
from artimport.core.models import ArtworkRecord, ImportCandidate, LatLon
from artimport.core.orchestrator import ImportOrchestrator
from artimport.core.tracker import ImportTracker

# Vancouver Art Gallery
BASE = LatLon(lat=49.2827, lon=-123.1207)


def offset(origin: LatLon, north_m: float = 0.0, east_m: float = 0.0) -> LatLon:
    """Point roughly north_m / east_m metres away from origin."""
    d_lat = north_m / 111320.0
    d_lon = east_m / (111320.0 * math.cos(math.radians(origin.lat)))
    return LatLon(lat=origin.lat + d_lat, lon=origin.lon + d_lon)


def make_record(
    record_id: str,
    title: Optional[str] = "Spinning Chandelier",
    location: Optional[LatLon] = BASE,
    artists: Optional[List[str]] = None,
    tags: Optional[Dict[str, str]] = None,
    photos: Optional[List[str]] = None,
) -> ArtworkRecord:
    return ArtworkRecord(
        id=record_id,
        title=title,
        location=location,
        artists=["Rodney Graham"] if artists is None else artists,
        tags=tags or {},
        photos=photos or [],
    )


def make_candidate(
    source_id: str,
    title: Optional[str] = "Spinning Chandelier",
    location: Optional[LatLon] = BASE,
    artists="Rodney Graham",
    tags: Optional[Dict[str, str]] = None,
    photos: Optional[List[str]] = None,
    source_name: str = "test-source",
) -> ImportCandidate:
    return ImportCandidate(
        source_id=source_id,
        title=title,
        raw_artists=artists,
        location=location,
        raw_tags=tags or {},
        photo_urls=photos or [],
        source_name=source_name,
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep MASS_IMPORT_* variables from the developer's shell out of the tests"""
    for var in ENV_OVERRIDES:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def archive():
    return InMemoryArchive()


@pytest.fixture
def make_orchestrator(tmp_path):
    """Factory for a quiet, non-debug orchestrator"""
    def _make(archive, options: Optional[Dict] = None, tracker: Optional[ImportTracker] = None, **collaborators):
        config = {
            "name": "Test_Import",
            "run_id": "test_run",
            "debug": False,
            "quiet": True,
            "log_dir": str(tmp_path / "logs"),
            "options": options or {},
        }
        return ImportOrchestrator(config, archive, tracker=tracker, **collaborators)
    return _make
