import json
import os
import sys
from typing import Any, Dict, Optional, Protocol

from loguru import logger

from .models import CandidateState, ImportOutcome


class ImportObserver(Protocol):
    def on_run_start(self, name: str, run_id: str, total: int): ...

    def on_candidate_start(self, index: int, source_id: Optional[str]): ...

    def on_state_change(self, index: int, previous: CandidateState, current: CandidateState): ...

    def on_candidate_end(self, outcome: ImportOutcome): ...

    def on_artifact(self, label: str, data: Any, depth: int = 1): ...

    def on_run_end(self, duration: float): ...

    def log_summary(self, summary_text: str): ...


class ImportLogger:
    def __init__(self, run_id: str, debug: bool = True, log_dir: Optional[str] = None):
        self.debug = debug
        self.run_id = run_id
        self.log_file = None

        # Reset loguru to clear default handlers
        logger.remove()

        if self.debug:
            # 1. Default: <project root>/logs, next to the artimport package
            if log_dir is None:
                core_dir = os.path.dirname(os.path.abspath(__file__))
                project_root = os.path.dirname(os.path.dirname(core_dir))
                log_dir = os.path.join(project_root, "logs")
            os.makedirs(log_dir, exist_ok=True)

            # 2. Set the file path
            self.log_file = os.path.join(log_dir, f"import_debug_{run_id}.log")

            fmt = "<green>{time:H:mm:ss}</green> | {level: <7} | {message}"

            logger.add(self.log_file, format=fmt, level="DEBUG")
            logger.add(sys.stderr, format=fmt, level="ERROR")
        else:
            logger.add(sys.stderr, format="{level: <7} | {message}", level="WARNING")

    def _format_json(self, data: Any) -> str:
        try:
            return json.dumps(data, indent=2, default=str)
        except (TypeError, ValueError):
            return str(data)

    def _log(self, text: str, depth: int = 0):
        if not self.debug:
            return

        indent = "   " * depth
        lines = text.splitlines()
        if not lines:
            return

        logger.debug("\n".join(f"{indent}{line}" for line in lines))

    # -------------------------------------------------------------------------
    # PUBLIC EVENTS
    # -------------------------------------------------------------------------

    def on_run_start(self, name: str, run_id: str, total: int):
        divider = "=" * 80
        self._log(f"{divider}\nSTARTING IMPORT: {name} (ID: {run_id}) | {total} candidates\n{divider}")

    def on_candidate_start(self, index: int, source_id: Optional[str]):
        self._log(f"[{index}] START candidate {source_id or '<no source id>'}")

    def on_state_change(self, index: int, previous: CandidateState, current: CandidateState):
        self._log(f"[{index}] {previous.value} -> {current.value}", depth=1)

    def on_candidate_end(self, outcome: ImportOutcome):
        summary: Dict[str, Any] = {
            "status": outcome.status.value,
            "target": outcome.target_artwork_id,
            "score": round(outcome.similarity.score, 4) if outcome.similarity else None,
        }
        if outcome.tag_delta is not None:
            summary["tags_added"] = sorted(outcome.tag_delta.added)
        if outcome.error_code:
            summary["error"] = f"{outcome.error_code}: {outcome.error_detail}"
        if outcome.warnings:
            summary["warnings"] = outcome.warnings

        self._log(
            f"[{outcome.index}] FINISHED {outcome.source_id} | {outcome.duration:.4f}s\n{self._format_json(summary)}",
            depth=1,
        )
        if outcome.error_code:
            logger.warning(f"Candidate {outcome.index} ({outcome.source_id}) failed: {outcome.error_code} {outcome.error_detail}")

    def on_artifact(self, label: str, data: Any, depth: int = 1):
        content = self._format_json(data) if isinstance(data, (dict, list)) else str(data)
        self._log(f">>> [ARTIFACT] {label}\n{content}", depth=depth)

    def on_run_end(self, duration: float):
        divider = "=" * 80
        self._log(f"{divider}\nTOTAL IMPORT TIME: {duration:.4f}s\n{divider}")

    def log_summary(self, summary_text: str):
        if not self.debug or not self.log_file:
            return
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write("\n" + summary_text + "\n")
