import os
from datetime import datetime
from typing import Optional

from loguru import logger

from .models import ImportReport

DEFAULT_REPORT_DIR = "reports"


def default_report_path(now: Optional[datetime] = None, directory: str = DEFAULT_REPORT_DIR) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d-%H%M%S")
    return os.path.join(directory, f"mass-import-{stamp}.json")


def write_report(report: ImportReport, path: Optional[str] = None) -> str:
    """Write the report as indented JSON and return the path written."""
    path = path or default_report_path()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        f.write(report.model_dump_json(indent=2))

    logger.info(f"Report written to {path}")
    return path
