"""
Batch import orchestrator tests: scenarios, idempotency, resilience, circuit breaker
"""

import pytest

from artimport.core.archive import InMemoryArchive
from artimport.core.models import CandidateState, ImportOptions, OutcomeStatus
from artimport.core.tracker import ImportTracker

from conftest import BASE, make_candidate, make_record, offset


class FailingSubmitter:
    """Submission API that is down (optionally only for some calls)"""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.calls = 0

    def submit_artwork(self, candidate):
        self.calls += 1
        if self.fail_on is None or self.calls in self.fail_on:
            raise ConnectionError("503 Service Unavailable")
        return f"remote-{self.calls}"

    def patch_artwork_tags(self, artwork_id, tags):
        raise ConnectionError("503 Service Unavailable")


class FlakyPhotoStore:
    def __init__(self, bad_urls):
        self.bad_urls = set(bad_urls)
        self.stored = []

    def store_photo(self, url, artwork_id=None):
        if url in self.bad_urls:
            raise IOError(f"could not fetch {url}")
        self.stored.append((url, artwork_id))
        return url


def _far_apart(n, prefix="c"):
    """n unrelated candidates 1km apart"""
    return [make_candidate(f"{prefix}{i}", title=f"Work {i}", location=offset(BASE, north_m=1000 * i)) for i in range(n)]


class TestScenarios:
    """End-to-end scenarios over the in-memory archive"""

    def test_exact_duplicate_reimport(self, make_orchestrator):
        archive = InMemoryArchive([make_record("a1", tags={"material": "bronze"})])
        orchestrator = make_orchestrator(archive)

        candidate = make_candidate("c1", tags={"material": "bronze"})
        first = orchestrator.run_import([candidate])
        outcome = first.outcomes[0]
        assert outcome.status == OutcomeStatus.MERGED_DUPLICATE
        assert outcome.target_artwork_id == "a1"
        assert outcome.similarity.score >= 0.7
        # nothing new to write
        assert archive.calls.get("patch_artwork_tags", 0) == 0

        second = orchestrator.run_import([candidate])
        assert second.outcomes[0].status == OutcomeStatus.SKIPPED_DUPLICATE
        assert second.outcomes[0].target_artwork_id == "a1"
        assert len(archive.records) == 1

    def test_conflicting_tag_preserved(self, make_orchestrator):
        archive = InMemoryArchive([make_record("a1", tags={"material": "bronze"})])
        report = make_orchestrator(archive).run_import(
            [make_candidate("c1", tags={"material": "steel", "year": "1999"})]
        )

        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.MERGED_DUPLICATE
        assert outcome.tag_delta.added == {"year": "1999"}
        assert outcome.tag_delta.kept_existing == {"material": "bronze"}
        assert outcome.tag_delta.discarded == {"material": "steel"}
        assert archive.get("a1").tags == {"material": "bronze", "year": "1999"}

    def test_far_away_same_name_is_new(self, make_orchestrator):
        archive = InMemoryArchive([make_record("a1", title="The Thinker")])
        report = make_orchestrator(archive).run_import(
            [make_candidate("c1", title="The Thinker", location=offset(BASE, north_m=5000))]
        )
        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.IMPORTED
        assert outcome.target_artwork_id != "a1"
        assert len(archive.records) == 2

    def test_ambiguous_match_writes_nothing(self, make_orchestrator):
        archive = InMemoryArchive([
            make_record("a1", artists=[], location=offset(BASE, north_m=-5)),
            make_record("a2", artists=[], location=offset(BASE, north_m=5)),
        ])
        orchestrator = make_orchestrator(archive, options={"threshold": 0.4})
        report = orchestrator.run_import([make_candidate("c1", artists=None, tags={"year": "2001"})])

        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.ERROR
        assert outcome.error_code == "ambiguous_match"
        assert outcome.state == CandidateState.FAILED
        assert {m.target_id for m in outcome.candidates} == {"a1", "a2"}
        assert "a1" in outcome.error_detail and "a2" in outcome.error_detail
        assert archive.calls.get("patch_artwork_tags", 0) == 0
        assert archive.calls.get("submit_artwork", 0) == 0
        assert len(archive.records) == 2


    def test_one_tag_lead_merges_into_leader(self, make_orchestrator):
        archive = InMemoryArchive([
            make_record("a1", tags={"material": "bronze", "year": "2010"}),
            make_record("a2", tags={"material": "bronze"}),
        ])
        candidate = make_candidate("c1", tags={"material": "bronze", "year": "2010"})
        outcome = make_orchestrator(archive).run_import([candidate]).outcomes[0]

        assert outcome.status == OutcomeStatus.MERGED_DUPLICATE
        assert outcome.target_artwork_id == "a1"

    def test_new_import_keeps_photos(self, make_orchestrator):
        archive = InMemoryArchive()
        candidate = make_candidate("c1", photos=["https://img.example/1.jpg"])
        outcome = make_orchestrator(archive).run_import([candidate]).outcomes[0]

        assert outcome.status == OutcomeStatus.IMPORTED
        assert archive.get(outcome.target_artwork_id).photos == ["https://img.example/1.jpg"]


class TestIdempotency:
    """Re-running a batch never duplicates records"""

    def test_reimport_of_new_records_is_skipped(self, make_orchestrator):
        archive = InMemoryArchive()
        orchestrator = make_orchestrator(archive)
        batch = _far_apart(3)

        first = orchestrator.run_import(batch)
        assert first.counts["imported"] == 3
        second = orchestrator.run_import(batch)
        assert second.counts["skipped-duplicate"] == 3
        assert len(archive.records) == 3

    def test_tracker_keys_include_source_name(self, make_orchestrator):
        tracker = ImportTracker()
        orchestrator = make_orchestrator(InMemoryArchive(), tracker=tracker)
        orchestrator.run_import([make_candidate("42", source_name="osm")])
        assert "osm:42" in tracker

    def test_empty_file_tracker_is_used_and_persisted(self, make_orchestrator, tmp_path):
        path = str(tmp_path / "tracker.json")
        archive = InMemoryArchive()
        tracker = ImportTracker(path)
        make_orchestrator(archive, tracker=tracker).run_import([make_candidate("c1")])
        tracker.save()

        reloaded = ImportTracker(path)
        assert reloaded.get("test-source:c1") == "artwork-1"

        report = make_orchestrator(archive, tracker=reloaded).run_import([make_candidate("c1")])
        assert report.outcomes[0].status == OutcomeStatus.SKIPPED_DUPLICATE
        assert report.outcomes[0].target_artwork_id == "artwork-1"

    def test_non_idempotent_run_resolves_again(self, make_orchestrator):
        archive = InMemoryArchive()
        orchestrator = make_orchestrator(archive)
        candidate = make_candidate("c1")
        orchestrator.run_import([candidate])

        report = orchestrator.run_import([candidate], ImportOptions(idempotent=False))
        assert report.outcomes[0].status == OutcomeStatus.MERGED_DUPLICATE
        assert len(archive.records) == 1

    def test_same_batch_duplicates_are_merged(self, make_orchestrator):
        archive = InMemoryArchive()
        report = make_orchestrator(archive).run_import([
            make_candidate("c1", tags={"material": "bronze"}),
            make_candidate("c2", tags={"year": "1999"}),
        ])
        assert [o.status for o in report.outcomes] == [OutcomeStatus.IMPORTED, OutcomeStatus.MERGED_DUPLICATE]
        first_id = report.outcomes[0].target_artwork_id
        assert report.outcomes[1].target_artwork_id == first_id
        assert archive.get(first_id).tags == {"material": "bronze", "year": "1999"}


class TestDryRun:
    """Dry runs resolve everything and write nothing"""

    def test_no_writes_and_tracker_untouched(self, make_orchestrator):
        archive = InMemoryArchive([make_record("a1")])
        tracker = ImportTracker()
        orchestrator = make_orchestrator(archive, tracker=tracker)

        report = orchestrator.run_import(
            [make_candidate("c1", tags={"year": "1999"}, photos=["https://img/1.jpg"]),
             make_candidate("c2", title="Other", location=offset(BASE, north_m=3000))],
            ImportOptions(dry_run=True),
        )

        assert report.dry_run is True
        assert report.outcomes[0].status == OutcomeStatus.MERGED_DUPLICATE
        assert report.outcomes[0].tag_delta.added == {"year": "1999"}
        assert report.outcomes[0].photos_stored == 0
        assert report.outcomes[1].status == OutcomeStatus.IMPORTED
        assert report.outcomes[1].target_artwork_id == "dry-run-1"

        assert archive.calls.get("submit_artwork", 0) == 0
        assert archive.calls.get("patch_artwork_tags", 0) == 0
        assert archive.calls.get("store_photo", 0) == 0
        assert archive.get("a1").tags == {}
        assert len(tracker) == 0

    def test_dry_run_sees_earlier_candidates_of_the_batch(self, make_orchestrator):
        report = make_orchestrator(InMemoryArchive()).run_import(
            [make_candidate("c1"), make_candidate("c2")],
            ImportOptions(dry_run=True),
        )
        assert report.outcomes[1].status == OutcomeStatus.MERGED_DUPLICATE
        assert report.outcomes[1].target_artwork_id == "dry-run-0"


class TestResilience:
    """One bad candidate never stops the batch"""

    def test_invalid_rows_become_error_outcomes(self, make_orchestrator):
        archive = InMemoryArchive()
        batch = [
            make_candidate("c0", location=offset(BASE, north_m=0)),
            {"source_id": "c1", "title": "Typed tag", "raw_tags": {"year": 1999}},
            make_candidate("c2", title=None, location=None, artists=None),
            {"source_id": "c3", "title": "From dict", "location": {"lat": 49.3, "lon": -123.0}},
            "not a row",
        ]
        report = make_orchestrator(archive).run_import(batch)

        statuses = [o.status for o in report.outcomes]
        assert statuses == [
            OutcomeStatus.IMPORTED,
            OutcomeStatus.ERROR,
            OutcomeStatus.ERROR,
            OutcomeStatus.IMPORTED,
            OutcomeStatus.ERROR,
        ]
        assert [o.index for o in report.outcomes] == [0, 1, 2, 3, 4]
        assert report.outcomes[1].error_code == "validation_failed"
        assert "raw_tags" in report.outcomes[1].error_detail
        assert report.outcomes[2].error_code == "validation_failed"
        assert report.outcomes[2].state == CandidateState.FAILED
        assert report.aborted is False
        assert report.counts["error"] == 3

    def test_invalid_coordinates_are_treated_as_missing(self, make_orchestrator):
        report = make_orchestrator(InMemoryArchive()).run_import(
            [{"source_id": "c1", "title": "Lost", "location": {"lat": 123.0, "lon": 0.0}}]
        )
        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.IMPORTED
        assert any("Invalid coordinates" in w for w in outcome.warnings)

    def test_outcome_order_matches_input(self, make_orchestrator):
        batch = _far_apart(5)
        report = make_orchestrator(InMemoryArchive()).run_import(batch)
        assert [o.source_id for o in report.outcomes] == [c.source_id for c in batch]


class TestCircuitBreaker:
    """Consecutive collaborator failures abort the run"""

    def test_trips_after_max_consecutive_errors(self, make_orchestrator):
        submitter = FailingSubmitter()
        orchestrator = make_orchestrator(InMemoryArchive(), submitter=submitter)
        report = orchestrator.run_import(_far_apart(5), ImportOptions(max_consecutive_errors=3))

        assert report.aborted is True
        assert "3 consecutive" in report.abort_reason
        assert [o.status for o in report.outcomes] == [OutcomeStatus.ERROR] * 3 + [OutcomeStatus.NOT_ATTEMPTED] * 2
        assert report.outcomes[0].error_code == "collaborator_failed"
        assert "submitter" in report.outcomes[0].error_detail
        assert report.outcomes[3].state == CandidateState.PENDING
        assert submitter.calls == 3
        assert report.counts["not-attempted"] == 2

    def test_success_resets_the_counter(self, make_orchestrator):
        submitter = FailingSubmitter(fail_on={1, 2, 4, 5})
        orchestrator = make_orchestrator(InMemoryArchive(), submitter=submitter)
        report = orchestrator.run_import(_far_apart(6), ImportOptions(max_consecutive_errors=3))

        assert report.aborted is False
        statuses = [o.status for o in report.outcomes]
        assert statuses == [
            OutcomeStatus.ERROR,
            OutcomeStatus.ERROR,
            OutcomeStatus.IMPORTED,
            OutcomeStatus.ERROR,
            OutcomeStatus.ERROR,
            OutcomeStatus.IMPORTED,
        ]

    def test_validation_errors_do_not_count(self, make_orchestrator):
        submitter = FailingSubmitter()
        orchestrator = make_orchestrator(InMemoryArchive(), submitter=submitter)
        invalid = {"source_id": "bad", "title": None}
        batch = [_far_apart(1)[0], invalid, invalid, invalid]
        report = orchestrator.run_import(batch, ImportOptions(max_consecutive_errors=2))

        assert report.aborted is False
        assert [o.error_code for o in report.outcomes] == ["collaborator_failed"] + ["validation_failed"] * 3

    def test_archive_failure_counts(self, make_orchestrator):
        class DownArchive:
            def query_archive_near(self, lat, lon, radius_meters, status=None):
                raise TimeoutError("archive timed out")

        orchestrator = make_orchestrator(DownArchive(), submitter=FailingSubmitter())
        report = orchestrator.run_import(_far_apart(4), ImportOptions(max_consecutive_errors=2))
        assert report.aborted is True
        assert "archive" in report.outcomes[0].error_detail
        assert report.counts["not-attempted"] == 2


class TestMergeWrites:
    """What a duplicate merge sends to the collaborators"""

    def test_only_added_tags_are_patched(self, make_orchestrator):
        patched = []

        class RecordingSubmitter:
            def submit_artwork(self, candidate):
                raise AssertionError("duplicate must not be submitted")

            def patch_artwork_tags(self, artwork_id, tags):
                patched.append((artwork_id, tags))

        archive = InMemoryArchive([make_record("a1", tags={"material": "bronze", "year": "1999"})])
        make_orchestrator(archive, submitter=RecordingSubmitter()).run_import(
            [make_candidate("c1", tags={"material": "steel", "year": "1999", "colour": "green"})]
        )
        assert patched == [("a1", {"colour": "green"})]

    def test_partial_photo_failure_keeps_tag_patch(self, make_orchestrator):
        archive = InMemoryArchive([make_record("a1", photos=["https://img/existing.jpg"])])
        photos = FlakyPhotoStore(bad_urls={"https://img/broken.jpg"})
        report = make_orchestrator(archive, photos=photos).run_import([
            make_candidate(
                "c1",
                tags={"year": "1999"},
                photos=["https://img/existing.jpg", "https://img/new.jpg", "https://img/broken.jpg"],
            )
        ])

        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.MERGED_DUPLICATE
        assert outcome.photos_stored == 1
        assert "https://img/broken.jpg" in outcome.error_detail
        assert photos.stored == [("https://img/new.jpg", "a1")]
        assert archive.get("a1").tags == {"year": "1999"}
        assert report.error_count == 0

    def test_patch_failure_is_an_error_outcome(self, make_orchestrator):
        archive = InMemoryArchive([make_record("a1")])
        report = make_orchestrator(archive, submitter=FailingSubmitter()).run_import(
            [make_candidate("c1", tags={"year": "1999"})]
        )
        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.ERROR
        assert outcome.error_code == "collaborator_failed"
        assert outcome.state == CandidateState.FAILED


class TestLocationEnhancementInRun:
    def test_enhancement_adds_location_tags(self, make_orchestrator):
        from artimport.core.models import LocationInfo

        class Geocoder:
            def reverse_geocode(self, lat, lon):
                return LocationInfo(city="Vancouver", country="Canada")

        archive = InMemoryArchive()
        orchestrator = make_orchestrator(archive, geocoder=Geocoder())
        report = orchestrator.run_import([make_candidate("c1")], ImportOptions(location_enhancement=True))

        artwork = archive.get(report.outcomes[0].target_artwork_id)
        assert artwork.tags["location_city"] == "Vancouver"
        assert artwork.tags["location_country"] == "Canada"

    def test_enhancement_without_geocoder_is_skipped(self, make_orchestrator):
        archive = InMemoryArchive()
        report = make_orchestrator(archive).run_import([make_candidate("c1")], ImportOptions(location_enhancement=True))
        assert report.outcomes[0].status == OutcomeStatus.IMPORTED


class TestReport:
    def test_counts_cover_every_status(self, make_orchestrator):
        report = make_orchestrator(InMemoryArchive()).run_import([])
        assert report.counts == {
            "imported": 0,
            "merged-duplicate": 0,
            "skipped-duplicate": 0,
            "error": 0,
            "not-attempted": 0,
        }
        assert report.finished_at is not None
        assert report.run_id == "test_run"

    def test_debug_run_writes_log_with_summary(self, tmp_path):
        from artimport.core.orchestrator import ImportOrchestrator

        config = {"name": "Debug_Run", "run_id": "dbg", "debug": True, "quiet": True, "log_dir": str(tmp_path)}
        ImportOrchestrator(config, InMemoryArchive()).run_import([make_candidate("c1")])

        log = (tmp_path / "import_debug_dbg.log").read_text(encoding="utf-8")
        assert "STARTING IMPORT: Debug_Run" in log
        assert "IMPORT SUMMARY: Debug_Run" in log

    def test_debug_log_records_tag_delta(self, tmp_path):
        from artimport.core.orchestrator import ImportOrchestrator

        archive = InMemoryArchive([make_record("a1")])
        config = {"name": "Debug_Merge", "run_id": "dbg2", "debug": True, "quiet": True, "log_dir": str(tmp_path)}
        ImportOrchestrator(config, archive).run_import([make_candidate("c1", tags={"material": "bronze"})])

        log = (tmp_path / "import_debug_dbg2.log").read_text(encoding="utf-8")
        assert "[ARTIFACT] Tag delta for a1" in log
        assert '"material": "bronze"' in log
