"""
Similarity scoring between an import candidate and an archive record.

The composite score is the plain sum of four independently clamped parts:

- title:    edit-distance similarity of the normalized titles x weights.title
- artist:   weights.artist if any artist token pair is a fuzzy match, else 0
- location: max(0, weights.location * (1 - distance_m / decay_m))
- tags:     weights.per_tag for every shared key whose values agree (no cap)

Missing data on either side is a zero contribution, never an error. With the
default weights a candidate needs title + artist + location agreement (0.7)
to reach the default threshold; tags only tip borderline cases.
"""

from typing import Dict, List, Optional

from rapidfuzz.distance import Levenshtein

from .geo import distance_or_none
from .models import ArtworkRecord, ImportCandidate, ScoringWeights, SimilarityBreakdown, SimilarityResult
from .normalize import normalize_text, split_artists

# Absorbs float summation error so a pair landing on the threshold counts.
SCORE_EPSILON = 1e-9


def edit_similarity(a: str, b: str) -> float:
    """1 - levenshtein(a, b) / max(len(a), len(b)); 0.0 if either is empty."""
    if not a or not b:
        return 0.0
    longest = max(len(a), len(b))
    return 1.0 - Levenshtein.distance(a, b) / longest


def title_score(a: Optional[str], b: Optional[str], weights: ScoringWeights) -> float:
    sim = edit_similarity(normalize_text(a), normalize_text(b))
    return min(weights.title, max(0.0, sim * weights.title))


def artist_score(a: List[str], b: List[str], weights: ScoringWeights) -> float:
    """Full artist weight if any token of `a` fuzzy-matches any token of `b`."""
    if not a or not b:
        return 0.0
    for left in a:
        for right in b:
            if edit_similarity(left, right) >= weights.artist_match_ratio:
                return weights.artist
    return 0.0


def location_score(distance_meters: Optional[float], weights: ScoringWeights) -> float:
    if distance_meters is None or weights.location_decay_meters <= 0:
        return 0.0
    raw = weights.location * (1.0 - distance_meters / weights.location_decay_meters)
    return min(weights.location, max(0.0, raw))


def _normalized_tags(tags: Dict[str, str]) -> Dict[str, str]:
    normalized = {}
    for key, value in tags.items():
        norm_key = normalize_text(key)
        if norm_key and norm_key not in normalized:
            normalized[norm_key] = normalize_text(value)
    return normalized


def tag_score(a: Dict[str, str], b: Dict[str, str], weights: ScoringWeights) -> float:
    if not a or not b:
        return 0.0
    left = _normalized_tags(a)
    right = _normalized_tags(b)
    matches = 0
    for key, value in left.items():
        if key in right and value and value == right[key]:
            matches += 1
    return matches * weights.per_tag


def score(
    candidate: ImportCandidate,
    existing: ArtworkRecord,
    weights: Optional[ScoringWeights] = None,
    threshold: float = 0.7,
) -> SimilarityResult:
    weights = weights or ScoringWeights()

    distance = distance_or_none(candidate.location, existing.location)

    breakdown = SimilarityBreakdown(
        title=title_score(candidate.title, existing.title, weights),
        artist=artist_score(split_artists(candidate.raw_artists), split_artists(existing.artists), weights),
        location=location_score(distance, weights),
        tags=tag_score(candidate.raw_tags, existing.tags, weights),
    )
    total = breakdown.total()

    return SimilarityResult(
        score=total,
        breakdown=breakdown,
        is_duplicate=total + SCORE_EPSILON >= threshold,
        matched_record_id=existing.id,
        distance_meters=distance,
    )
