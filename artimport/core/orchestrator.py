import io
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .collaborators import ArchiveQuery, ArtworkSubmitter, PhotoStore, ReverseGeocoder
from .config import load_options
from .errors import CircuitBreakerTripped, CollaboratorError, MassImportError, ValidationError
from .location import LocationEnhancer
from .logging import ImportLogger, ImportObserver
from .models import (
    AmbiguousResolution,
    ArtworkRecord,
    CandidateState,
    DuplicateResolution,
    ImportCandidate,
    ImportOptions,
    ImportOutcome,
    ImportReport,
    OutcomeStatus,
    clean_tags,
)
from .normalize import split_raw_artists
from .registry import MapperRegistry, default_registry
from .resolver import DuplicateResolver
from .spatial import SpatialCandidateFinder
from .tag_merge import merge_tags
from .tracker import ImportTracker

Row = Union[ImportCandidate, Dict[str, Any]]

ALLOWED_TRANSITIONS = {
    CandidateState.PENDING: {CandidateState.RESOLVING, CandidateState.SKIPPING, CandidateState.FAILED},
    CandidateState.RESOLVING: {CandidateState.IMPORTING, CandidateState.MERGING, CandidateState.FAILED},
    CandidateState.IMPORTING: {CandidateState.DONE, CandidateState.FAILED},
    CandidateState.MERGING: {CandidateState.DONE, CandidateState.FAILED},
    CandidateState.SKIPPING: {CandidateState.DONE},
}

STATUS_STYLES = {
    OutcomeStatus.IMPORTED: "green",
    OutcomeStatus.MERGED_DUPLICATE: "cyan",
    OutcomeStatus.SKIPPED_DUPLICATE: "dim",
    OutcomeStatus.ERROR: "bold red",
    OutcomeStatus.NOT_ATTEMPTED: "yellow",
}


class _Run:
    """Everything that lives for exactly one run_import call."""

    def __init__(self, options: ImportOptions, tracker: ImportTracker, finder: SpatialCandidateFinder,
                 resolver: DuplicateResolver, enhancer: Optional[LocationEnhancer]):
        self.options = options
        self.tracker = tracker
        self.finder = finder
        self.resolver = resolver
        self.enhancer = enhancer


class _Candidate:
    def __init__(self, index: int, observer: ImportObserver):
        self.index = index
        self.state = CandidateState.PENDING
        self.started = time.time()
        self._observer = observer

    def move(self, new_state: CandidateState) -> None:
        if new_state not in ALLOWED_TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Illegal state transition {self.state.value} -> {new_state.value}")
        self._observer.on_state_change(self.index, self.state, new_state)
        self.state = new_state

    @property
    def duration(self) -> float:
        return time.time() - self.started


class ImportOrchestrator:
    def __init__(
        self,
        config: Dict,
        archive: ArchiveQuery,
        submitter: Optional[ArtworkSubmitter] = None,
        photos: Optional[PhotoStore] = None,
        geocoder: Optional[ReverseGeocoder] = None,
        registry: Optional[MapperRegistry] = None,
        tracker: Optional[ImportTracker] = None,
    ):
        self.config = config
        self.name = config.get("name", "Import")
        self.run_id = config.get("run_id") or datetime.now().strftime("%Y%m%d_%H%M%S")
        self.debug = config.get("debug", False)
        self.quiet = config.get("quiet", False)

        # 1. Initialize the Logger Service
        self.logger: ImportObserver = ImportLogger(self.run_id, debug=self.debug, log_dir=config.get("log_dir"))

        # 2. Options: config dict + environment
        self.options = load_options(config)

        # 3. Collaborators. An archive that can also write (InMemoryArchive) doubles as submitter/photo store.
        self.archive = archive
        self.submitter = submitter if submitter is not None else archive
        self.photos = photos if photos is not None else archive
        self.geocoder = geocoder
        self.registry = registry if registry is not None else default_registry()
        self.tracker = tracker if tracker is not None else ImportTracker()

    # -------------------------------------------------------------------------
    # ENTRY POINTS
    # -------------------------------------------------------------------------

    def run_source(self, importer_name: str, raw_data: Any, options: Optional[ImportOptions] = None) -> ImportReport:
        """Map a raw source export through the named mapper, then import it."""
        options = options if options is not None else self.options
        mapper = self.registry.get(importer_name)

        batch_id = f"{mapper.name}-{self.run_id}"
        candidates = mapper.map_data(raw_data, batch_id=batch_id)

        end = None if options.limit is None else options.offset + options.limit
        selected = candidates[options.offset:end]
        print(f"[ImportOrchestrator] {mapper.name} v{mapper.version}: {len(candidates)} records mapped, "
              f"{len(selected)} selected (offset={options.offset}, limit={options.limit})")

        warnings: Dict[int, List[str]] = {}
        for i, candidate in enumerate(selected):
            loc = candidate.location
            if candidate.has_coordinates and not mapper.validate_bounds(loc.lat, loc.lon):
                warnings[i] = [f"Coordinates ({loc.lat}, {loc.lon}) are outside the expected bounds for {mapper.name}"]

        return self.run_import(selected, options, batch_id=batch_id, warnings=warnings, start_index=options.offset)

    def run_import(
        self,
        batch: Iterable[Row],
        options: Optional[ImportOptions] = None,
        batch_id: Optional[str] = None,
        warnings: Optional[Dict[int, List[str]]] = None,
        start_index: int = 0,
    ) -> ImportReport:
        options = options if options is not None else self.options
        warnings = warnings or {}
        rows = list(batch)

        report = ImportReport(
            run_id=self.run_id,
            name=self.name,
            batch_id=batch_id,
            dry_run=options.dry_run,
            started_at=datetime.now(timezone.utc),
        )
        run = self._start_run(options)

        # Notify Start
        self.logger.on_run_start(self.name, self.run_id, len(rows))
        mode = " [DRY RUN]" if options.dry_run else ""
        print(f"--- Launching Import: {self.name} (ID={self.run_id}){mode} ---")

        total_start = time.time()
        consecutive_errors = 0
        last_error: Optional[str] = None

        for position, row in enumerate(rows):
            index = start_index + position

            if report.aborted:
                report.outcomes.append(self._not_attempted(index, row, report.abort_reason))
                continue

            outcome, collaborator_failed = self._process_candidate(run, index, row, warnings.get(position, []))
            report.outcomes.append(outcome)
            self.logger.on_candidate_end(outcome)

            # Circuit breaker: None leaves the counter as is
            if collaborator_failed is True:
                consecutive_errors += 1
                last_error = outcome.error_detail
                if consecutive_errors >= options.max_consecutive_errors:
                    tripped = CircuitBreakerTripped(consecutive_errors, last_error)
                    logger.error(tripped.message)
                    report.aborted = True
                    report.abort_reason = tripped.message
            elif collaborator_failed is False:
                consecutive_errors = 0

        total_duration = time.time() - total_start

        report.finished_at = datetime.now(timezone.utc)
        report.counts = self._count(report.outcomes)

        # Notify End
        self.logger.on_run_end(total_duration)
        self._print_and_log_summary(report, total_duration)

        return report

    # -------------------------------------------------------------------------
    # PER-CANDIDATE PIPELINE
    # -------------------------------------------------------------------------

    def _start_run(self, options: ImportOptions) -> _Run:
        # Dry runs work on a fork so nothing they see is remembered.
        tracker = self.tracker.fork() if options.dry_run else self.tracker
        finder = SpatialCandidateFinder(self.archive)
        resolver = DuplicateResolver(self.archive, finder, options)

        enhancer = None
        if options.location_enhancement:
            if self.geocoder is None:
                logger.warning("Location enhancement requested but no geocoder configured; skipping")
            else:
                enhancer = LocationEnhancer(self.geocoder)
        return _Run(options, tracker, finder, resolver, enhancer)

    def _process_candidate(
        self, run: _Run, index: int, row: Row, warnings: List[str]
    ) -> Tuple[ImportOutcome, Optional[bool]]:
        """
        Returns the outcome and what it means for the circuit breaker:
        True = collaborator failure, False = collaborators answered, None = neutral.
        """
        c = _Candidate(index, self.logger)
        self.logger.on_candidate_start(index, _row_source_id(row))
        warnings = list(warnings)

        # 1. Coerce, normalize, validate. Nothing here talks to a collaborator.
        try:
            candidate = self._coerce(row)
            candidate = self._normalize(candidate, warnings)
            self._validate(candidate)
        except ValidationError as e:
            c.move(CandidateState.FAILED)
            return self._error_outcome(c, _row_source_id(row), _row_title(row), e, warnings), None

        # 2. Idempotency
        key = candidate.tracking_key
        if run.options.idempotent and key in run.tracker:
            c.move(CandidateState.SKIPPING)
            c.move(CandidateState.DONE)
            return ImportOutcome(
                index=index,
                source_id=candidate.source_id,
                title=candidate.title,
                status=OutcomeStatus.SKIPPED_DUPLICATE,
                state=c.state,
                target_artwork_id=run.tracker.get(key),
                warnings=warnings,
                duration=c.duration,
            ), None

        # 3. Enhance, resolve, write. Per-candidate exception boundary.
        try:
            if run.enhancer is not None:
                candidate = run.enhancer.enhance(candidate)

            c.move(CandidateState.RESOLVING)
            records = self._call("archive", run.resolver.shortlist, candidate)
            resolution = run.resolver.decide(candidate, records)

            if isinstance(resolution, AmbiguousResolution):
                self.logger.on_artifact(
                    "Ambiguous candidates",
                    [{"id": m.target_id, "score": round(m.similarity.score, 4)} for m in resolution.candidates],
                )
                c.move(CandidateState.FAILED)
                ids = ", ".join(m.target_id for m in resolution.candidates)
                return ImportOutcome(
                    index=index,
                    source_id=candidate.source_id,
                    title=candidate.title,
                    status=OutcomeStatus.ERROR,
                    state=c.state,
                    candidates=resolution.candidates,
                    error_code="ambiguous_match",
                    error_detail=f"Ambiguous match, manual review needed between: {ids}",
                    warnings=warnings,
                    duration=c.duration,
                ), None

            if isinstance(resolution, DuplicateResolution):
                target = next(r for r in records if r.id == resolution.target_id)
                return self._merge(run, c, candidate, target, resolution, warnings)

            return self._import_new(run, c, candidate, warnings)

        except CollaboratorError as e:
            c.move(CandidateState.FAILED)
            return self._error_outcome(c, candidate.source_id, candidate.title, e, warnings), True
        except MassImportError as e:
            c.move(CandidateState.FAILED)
            return self._error_outcome(c, candidate.source_id, candidate.title, e, warnings), None
        except Exception as e:
            logger.exception(f"Unexpected failure on candidate {index} ({candidate.source_id})")
            c.move(CandidateState.FAILED)
            return self._error_outcome(c, candidate.source_id, candidate.title, e, warnings), None

    def _import_new(
        self, run: _Run, c: _Candidate, candidate: ImportCandidate, warnings: List[str]
    ) -> Tuple[ImportOutcome, Optional[bool]]:
        c.move(CandidateState.IMPORTING)

        if run.options.dry_run:
            artwork_id = f"dry-run-{c.index}"
        else:
            artwork_id = self._call("submitter", self.submitter.submit_artwork, candidate)

        # Later candidates of this run must see this one even if the archive lags.
        run.finder.stage(ArtworkRecord(
            id=artwork_id,
            title=candidate.title,
            location=candidate.location,
            artists=split_raw_artists(candidate.raw_artists),
            tags=dict(candidate.raw_tags),
            photos=list(candidate.photo_urls),
        ))
        run.tracker.mark(candidate.tracking_key, artwork_id)

        c.move(CandidateState.DONE)
        return ImportOutcome(
            index=c.index,
            source_id=candidate.source_id,
            title=candidate.title,
            status=OutcomeStatus.IMPORTED,
            state=c.state,
            target_artwork_id=artwork_id,
            warnings=warnings,
            duration=c.duration,
        ), False

    def _merge(
        self,
        run: _Run,
        c: _Candidate,
        candidate: ImportCandidate,
        target: ArtworkRecord,
        resolution: DuplicateResolution,
        warnings: List[str],
    ) -> Tuple[ImportOutcome, Optional[bool]]:
        c.move(CandidateState.MERGING)

        # 1. Tags: only keys the archive lacks are written
        delta = merge_tags(target.tags, candidate.raw_tags)
        self.logger.on_artifact(f"Tag delta for {target.id}", delta.model_dump())
        for key, value in delta.discarded.items():
            logger.warning(
                f"Tag conflict on {target.id} '{key}': kept '{delta.kept_existing[key]}', discarded '{value}' "
                f"from {candidate.tracking_key}"
            )
        if delta.added and not run.options.dry_run:
            self._call("submitter", self.submitter.patch_artwork_tags, target.id, dict(delta.added))

        # 2. Photos: one at a time; a failed photo never undoes the tag patch
        new_urls = []
        for url in candidate.photo_urls:
            if url not in target.photos and url not in new_urls:
                new_urls.append(url)

        stored: List[str] = []
        photo_errors: List[str] = []
        if run.options.dry_run:
            stored = new_urls
        else:
            for url in new_urls:
                try:
                    self._call("photos", self.photos.store_photo, url, target.id)
                    stored.append(url)
                except CollaboratorError as e:
                    logger.warning(f"Photo {url} for {target.id} failed: {e}")
                    photo_errors.append(f"photo {url}: {e}")

        run.finder.stage(target.model_copy(update={
            "tags": delta.merged_with(target.tags),
            "photos": target.photos + stored,
        }))
        run.tracker.mark(candidate.tracking_key, target.id)

        c.move(CandidateState.DONE)
        outcome = ImportOutcome(
            index=c.index,
            source_id=candidate.source_id,
            title=candidate.title,
            status=OutcomeStatus.MERGED_DUPLICATE,
            state=c.state,
            target_artwork_id=target.id,
            similarity=resolution.similarity,
            tag_delta=delta,
            photos_stored=0 if run.options.dry_run else len(stored),
            error_detail="; ".join(photo_errors) or None,
            warnings=warnings,
            duration=c.duration,
        )
        return outcome, (None if photo_errors else False)

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    @staticmethod
    def _call(collaborator: str, fn, *args):
        try:
            return fn(*args)
        except MassImportError:
            raise
        except Exception as e:
            raise CollaboratorError(collaborator, str(e) or type(e).__name__,
                                    status_code=getattr(e, "status_code", None)) from e

    @staticmethod
    def _coerce(row: Row) -> ImportCandidate:
        if isinstance(row, ImportCandidate):
            return row
        if isinstance(row, dict):
            try:
                return ImportCandidate.model_validate(row)
            except PydanticValidationError as e:
                fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
                raise ValidationError(f"Invalid candidate fields: {', '.join(fields)}", {"fields": fields}) from e
        raise ValidationError(f"Unsupported row type: {type(row).__name__}")

    @staticmethod
    def _normalize(candidate: ImportCandidate, warnings: List[str]) -> ImportCandidate:
        title = candidate.title.strip() if candidate.title else None
        location = candidate.location
        if location is not None and not location.is_valid():
            warnings.append(f"Invalid coordinates ({location.lat}, {location.lon}) treated as missing")
            location = None
        return candidate.model_copy(update={
            "source_id": candidate.source_id.strip(),
            "title": title or None,
            "location": location,
            "raw_tags": clean_tags(candidate.raw_tags),
        })

    @staticmethod
    def _validate(candidate: ImportCandidate) -> None:
        if not candidate.source_id:
            raise ValidationError("Candidate has no source_id")
        if not candidate.title and not candidate.has_coordinates and not candidate.raw_tags:
            raise ValidationError(
                "Candidate has no title, no valid coordinates and no tags",
                {"source_id": candidate.source_id},
            )

    @staticmethod
    def _error_outcome(
        c: _Candidate, source_id: Optional[str], title: Optional[str], error: Exception, warnings: List[str]
    ) -> ImportOutcome:
        code = error.code if isinstance(error, MassImportError) else "internal_error"
        return ImportOutcome(
            index=c.index,
            source_id=source_id,
            title=title,
            status=OutcomeStatus.ERROR,
            state=c.state,
            error_code=code,
            error_detail=str(error),
            warnings=warnings,
            duration=c.duration,
        )

    @staticmethod
    def _not_attempted(index: int, row: Row, reason: Optional[str]) -> ImportOutcome:
        return ImportOutcome(
            index=index,
            source_id=_row_source_id(row),
            title=_row_title(row),
            status=OutcomeStatus.NOT_ATTEMPTED,
            state=CandidateState.PENDING,
            error_code=CircuitBreakerTripped.code,
            error_detail=reason,
        )

    @staticmethod
    def _count(outcomes: List[ImportOutcome]) -> Dict[str, int]:
        counts = {status.value: 0 for status in OutcomeStatus}
        for outcome in outcomes:
            counts[outcome.status.value] += 1
        return counts

    def _print_and_log_summary(self, report: ImportReport, total_duration: float):
        """
        Generates the Rich table, prints it to stdout, and logs it to file.
        """
        # 1. Create Rich Table
        title = f"IMPORT SUMMARY: {self.name}" + (" [DRY RUN]" if report.dry_run else "")
        table = Table(title=title, title_justify="left", box=box.ROUNDED, show_header=True)
        table.add_column("Status", justify="left", no_wrap=True)
        table.add_column("Count", justify="right")

        for status in OutcomeStatus:
            count = report.counts.get(status.value, 0)
            style = STATUS_STYLES[status] if count else "dim"
            table.add_row(Text(status.value, style=style), str(count))

        table.add_section()
        table.add_row("TOTAL", str(len(report.outcomes)))
        table.add_row("DURATION", f"{total_duration:.4f}s")
        if report.aborted:
            table.add_row(Text("ABORTED", style="bold red"), "yes")

        # 2. Errors, one line each
        errors = [o for o in report.outcomes if o.status == OutcomeStatus.ERROR]
        error_table = None
        if errors:
            error_table = Table(title="ERRORS", title_justify="left", box=box.ROUNDED, show_header=True)
            error_table.add_column("#", justify="right")
            error_table.add_column("Source ID", no_wrap=True)
            error_table.add_column("Code")
            error_table.add_column("Detail")
            for o in errors:
                error_table.add_row(str(o.index), o.source_id or "-", o.error_code or "-", o.error_detail or "")

        # 3. Print to Terminal
        if not self.quiet:
            term_console = Console()
            term_console.print(table)
            if error_table is not None:
                term_console.print(error_table)

        # 4. Save to Log File (via Logger Service)
        string_buffer = io.StringIO()
        file_console = Console(file=string_buffer, no_color=True, width=150)
        file_console.print(table)
        if error_table is not None:
            file_console.print(error_table)

        self.logger.log_summary(string_buffer.getvalue())


def _row_source_id(row: Row) -> Optional[str]:
    if isinstance(row, ImportCandidate):
        return row.source_id
    if isinstance(row, dict) and row.get("source_id") is not None:
        return str(row.get("source_id"))
    return None


def _row_title(row: Row) -> Optional[str]:
    if isinstance(row, ImportCandidate):
        return row.title
    if isinstance(row, dict) and isinstance(row.get("title"), str):
        return row["title"]
    return None
