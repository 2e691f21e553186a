"""
Duplicate resolution for a single import candidate.

Algorithm:
1) Candidate has valid coordinates -> spatial search (default 100m, wider than
   the 50m scoring decay so near-edge duplicates are still scored).
   No coordinates -> title lookup if the archive supports it, else "new".
2) Score every short-listed record.
3) Keep the ones at or above the threshold.
4) None qualify -> new. One -> duplicate.
5) Two or more: if the best two are within the tie band the match is
   ambiguous and every qualifying record is surfaced for manual review;
   otherwise the single best record is the duplicate.

Qualifying matches are ordered by score (desc), distance (asc), id, so the
decision is deterministic for a given archive state.
"""

from typing import List, Optional, Tuple

from loguru import logger

from .collaborators import ArchiveQuery, TitleSearchable
from .models import (
    AmbiguousResolution,
    ArtworkRecord,
    DuplicateResolution,
    ImportCandidate,
    ImportOptions,
    MatchCandidate,
    NewResolution,
    Resolution,
    SimilarityResult,
)
from .scoring import SCORE_EPSILON, score
from .spatial import SpatialCandidateFinder


def _order_key(result: SimilarityResult) -> Tuple[float, float, str]:
    distance = result.distance_meters if result.distance_meters is not None else float("inf")
    return (-result.score, distance, result.matched_record_id or "")


class DuplicateResolver:
    def __init__(
        self,
        archive: ArchiveQuery,
        finder: Optional[SpatialCandidateFinder] = None,
        options: Optional[ImportOptions] = None,
    ):
        self.archive = archive
        self.finder = finder if finder is not None else SpatialCandidateFinder(archive)
        self.options = options or ImportOptions()

    def _title_candidates(self, candidate: ImportCandidate) -> List[ArtworkRecord]:
        limit = self.options.title_fallback_limit
        staged = self.finder.staged_matching_title(candidate.title, limit)
        if not candidate.title or not isinstance(self.archive, TitleSearchable):
            return staged

        records = {r.id: r for r in self.archive.query_archive_by_title(candidate.title, limit)}
        records.update((r.id, r) for r in staged)
        return list(records.values())[:limit]

    def shortlist(self, candidate: ImportCandidate) -> List[ArtworkRecord]:
        if candidate.has_coordinates:
            return self.finder.find_candidates(candidate.location, self.options.search_radius_meters)

        logger.debug(f"Candidate {candidate.source_id} has no coordinates; falling back to title lookup")
        return self._title_candidates(candidate)

    def resolve(self, candidate: ImportCandidate, threshold: Optional[float] = None) -> Resolution:
        return self.decide(candidate, self.shortlist(candidate), threshold)

    def decide(
        self,
        candidate: ImportCandidate,
        records: List[ArtworkRecord],
        threshold: Optional[float] = None,
    ) -> Resolution:
        """Score an already short-listed set of records and pick a resolution."""
        threshold = self.options.threshold if threshold is None else threshold

        if not records:
            return NewResolution()

        results = [score(candidate, record, self.options.weights, threshold) for record in records]
        qualifying = sorted((r for r in results if r.is_duplicate), key=_order_key)

        if not qualifying:
            best = max(r.score for r in results)
            logger.debug(f"No duplicate for {candidate.source_id}: best score {best:.3f} < {threshold}")
            return NewResolution()

        top = qualifying[0]
        if len(qualifying) == 1:
            return DuplicateResolution(target_id=top.matched_record_id, similarity=top)

        runner_up = qualifying[1]
        if top.score - runner_up.score < self.options.tie_band_width - SCORE_EPSILON:
            return AmbiguousResolution(
                candidates=[MatchCandidate(target_id=r.matched_record_id, similarity=r) for r in qualifying]
            )

        return DuplicateResolution(target_id=top.matched_record_id, similarity=top)
