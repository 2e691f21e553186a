import math
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator


class PublicationStatus(str, Enum):
    """Moderation state of an archive record.

    Values:
        PENDING: Submitted but not yet reviewed. Still a valid duplicate
            target, since a duplicate may exist only as a pending submission.
        APPROVED: Reviewed and published on the map.
    """
    PENDING = "pending"
    APPROVED = "approved"


class OutcomeStatus(str, Enum):
    """Final classification of one candidate in an import run.

    Values:
        IMPORTED: Submitted as a new artwork.
        MERGED_DUPLICATE: Matched an existing artwork; new tags/photos merged.
        SKIPPED_DUPLICATE: Already imported by a previous run (source id seen).
        ERROR: Validation failure, ambiguous match or collaborator failure.
        NOT_ATTEMPTED: Never processed because the circuit breaker tripped.
    """
    IMPORTED = "imported"
    MERGED_DUPLICATE = "merged-duplicate"
    SKIPPED_DUPLICATE = "skipped-duplicate"
    ERROR = "error"
    NOT_ATTEMPTED = "not-attempted"


class CandidateState(str, Enum):
    PENDING = "pending"
    RESOLVING = "resolving"
    IMPORTING = "importing"
    MERGING = "merging"
    SKIPPING = "skipping"
    DONE = "done"
    FAILED = "failed"


class LatLon(BaseModel):
    lat: float
    lon: float

    def is_valid(self) -> bool:
        if not (math.isfinite(self.lat) and math.isfinite(self.lon)):
            return False
        return -90.0 <= self.lat <= 90.0 and -180.0 <= self.lon <= 180.0


class LocationInfo(BaseModel):
    """Result of a reverse-geocode lookup."""
    display_name: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    suburb: Optional[str] = None
    neighbourhood: Optional[str] = None


TagMap = Dict[StrictStr, StrictStr]


def clean_tags(tags: Dict[str, str]) -> Dict[str, str]:
    cleaned: Dict[str, str] = {}
    for key, value in tags.items():
        key = key.strip()
        value = value.strip()
        if key and value:
            cleaned[key] = value
    return cleaned


class ArtworkRecord(BaseModel):
    """An artwork already in the archive. The engine only reads these."""
    id: str
    title: Optional[str] = None
    location: Optional[LatLon] = None
    artists: List[str] = Field(default_factory=list)
    tags: TagMap = Field(default_factory=dict)
    photos: List[str] = Field(default_factory=list)
    publication_status: PublicationStatus = PublicationStatus.PENDING
    created_at: Optional[datetime] = None


class ImportCandidate(BaseModel):
    """One incoming row of an import batch.

    Tag values must already be strings: a mapper that wants to import a
    number or a boolean has to convert it explicitly. Anything else is
    rejected here instead of being stringified.
    """
    source_id: str
    title: Optional[str] = None
    raw_artists: Union[str, List[str], None] = None
    location: Optional[LatLon] = None
    raw_tags: TagMap = Field(default_factory=dict)
    photo_urls: List[str] = Field(default_factory=list)
    source_name: str = ""
    source_url: Optional[str] = None
    import_batch_id: Optional[str] = None

    @field_validator("raw_tags")
    @classmethod
    def _strip_blank_tags(cls, value: Dict[str, str]) -> Dict[str, str]:
        return clean_tags(value)

    @property
    def has_coordinates(self) -> bool:
        return self.location is not None and self.location.is_valid()

    @property
    def tracking_key(self) -> str:
        if self.source_name:
            return f"{self.source_name}:{self.source_id}"
        return self.source_id


class ScoringWeights(BaseModel):
    title: float = 0.2
    artist: float = 0.2
    location: float = 0.3
    per_tag: float = 0.05
    location_decay_meters: float = 50.0
    artist_match_ratio: float = 0.8


class SimilarityBreakdown(BaseModel):
    title: float = 0.0
    artist: float = 0.0
    location: float = 0.0
    tags: float = 0.0

    def total(self) -> float:
        return self.title + self.artist + self.location + self.tags


class SimilarityResult(BaseModel):
    score: float
    breakdown: SimilarityBreakdown
    is_duplicate: bool
    matched_record_id: Optional[str] = None
    distance_meters: Optional[float] = None


class TagMergeDelta(BaseModel):
    """Outcome of merging an incoming tag map into an existing one.

    `added` holds incoming values to be written, `kept_existing` holds the
    existing values that won a conflict, `unchanged` the values both sides
    agree on. `discarded` keeps the losing incoming values for the log.
    """
    added: Dict[str, str] = Field(default_factory=dict)
    kept_existing: Dict[str, str] = Field(default_factory=dict)
    unchanged: Dict[str, str] = Field(default_factory=dict)
    discarded: Dict[str, str] = Field(default_factory=dict)

    def merged_with(self, existing: Dict[str, str]) -> Dict[str, str]:
        merged = dict(existing)
        merged.update(self.added)
        return merged


class NewResolution(BaseModel):
    kind: Literal["new"] = "new"


class DuplicateResolution(BaseModel):
    kind: Literal["duplicate"] = "duplicate"
    target_id: str
    similarity: SimilarityResult


class MatchCandidate(BaseModel):
    target_id: str
    similarity: SimilarityResult


class AmbiguousResolution(BaseModel):
    kind: Literal["ambiguous"] = "ambiguous"
    candidates: List[MatchCandidate] = Field(default_factory=list)


Resolution = Annotated[
    Union[NewResolution, DuplicateResolution, AmbiguousResolution],
    Field(discriminator="kind"),
]


class ImportOptions(BaseModel):
    threshold: float = 0.7
    search_radius_meters: float = 100.0
    tie_band_width: float = 0.05
    idempotent: bool = True
    max_consecutive_errors: int = 3
    dry_run: bool = False
    location_enhancement: bool = False
    title_fallback_limit: int = 20
    offset: int = 0
    limit: Optional[int] = None
    weights: ScoringWeights = Field(default_factory=ScoringWeights)


class ImportOutcome(BaseModel):
    """Per-candidate result. Created once, never mutated."""
    model_config = ConfigDict(frozen=True)

    index: int
    source_id: Optional[str] = None
    title: Optional[str] = None
    status: OutcomeStatus
    state: CandidateState
    target_artwork_id: Optional[str] = None
    similarity: Optional[SimilarityResult] = None
    candidates: List[MatchCandidate] = Field(default_factory=list)
    tag_delta: Optional[TagMergeDelta] = None
    photos_stored: int = 0
    error_code: Optional[str] = None
    error_detail: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    duration: float = 0.0


class ImportReport(BaseModel):
    """Per-candidate outcomes and status counts for one import run, in input order."""
    run_id: str
    name: str = "Import"
    batch_id: Optional[str] = None
    dry_run: bool = False
    started_at: datetime
    finished_at: Optional[datetime] = None
    counts: Dict[str, int] = Field(default_factory=dict)
    outcomes: List[ImportOutcome] = Field(default_factory=list)
    aborted: bool = False
    abort_reason: Optional[str] = None

    @property
    def error_count(self) -> int:
        return self.counts.get(OutcomeStatus.ERROR.value, 0)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
