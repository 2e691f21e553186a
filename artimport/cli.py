"""
Command-line entry point.

    artimport --importer vancouver --input public-art.json --archive-snapshot archive.json --dry-run
    artimport --config osm --input export.geojson --api-url https://api.example.org --token ...

Exit codes: 0 clean run, 1 when any candidate ended in error or the run
aborted, 2 on usage or configuration errors.
"""

import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .configs.osm import OSM_DRY_RUN_CONFIG, OSM_IMPORT_CONFIG
from .configs.vancouver import VANCOUVER_IMPORT_CONFIG
from .core.archive import InMemoryArchive
from .core.config import load_options
from .core.errors import MassImportError
from .core.orchestrator import ImportOrchestrator
from .core.reporting import write_report
from .core.tracker import ImportTracker
from .services.api_client import ArchiveApiClient
from .services.nominatim import NominatimGeocoder

NAMED_CONFIGS: Dict[str, Dict[str, Any]] = {
    "osm": OSM_IMPORT_CONFIG,
    "osm-dry-run": OSM_DRY_RUN_CONFIG,
    "vancouver": VANCOUVER_IMPORT_CONFIG,
}

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="artimport", description="Import open-data artworks with duplicate detection.")
    parser.add_argument("--config", choices=sorted(NAMED_CONFIGS), help="Named run configuration")
    parser.add_argument("--importer", help="Mapper to use (osm, vancouver)")
    parser.add_argument("--input", required=True, help="Raw source export (JSON / GeoJSON)")

    target = parser.add_mutually_exclusive_group()
    target.add_argument("--api-url", help="Archive API base URL")
    target.add_argument("--archive-snapshot", help="JSON snapshot of the archive for offline runs")
    parser.add_argument("--token", help="API token (default: $MASS_IMPORT_TOKEN)")

    parser.add_argument("--dry-run", action="store_true", help="Resolve everything, write nothing")
    parser.add_argument("--threshold", type=float, help="Duplicate score threshold")
    parser.add_argument("--offset", type=int, help="Skip the first N mapped records")
    parser.add_argument("--limit", type=int, help="Process at most N records")
    parser.add_argument("--tracker-file", help="JSON file remembering imported source ids across runs")
    parser.add_argument("--report-path", help="Where to write the JSON report")
    parser.add_argument("--location-enhancement", action="store_true", help="Add reverse-geocoded location tags")
    parser.add_argument("--debug", action="store_true", help="Write a debug log under logs/")
    return parser


def _load_input(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _build_config(args: argparse.Namespace) -> Dict[str, Any]:
    config = dict(NAMED_CONFIGS[args.config]) if args.config else {"name": "CLI_Import", "debug": False}
    config["debug"] = bool(args.debug or config.get("debug", False))
    return config


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    config = _build_config(args)
    importer = args.importer or config.get("importer")
    if not importer:
        print("error: --importer is required when no --config names one", file=sys.stderr)
        return EXIT_USAGE

    api_url = args.api_url or (config.get("api") or {}).get("base_url") or os.environ.get("MASS_IMPORT_API_URL")
    if not args.archive_snapshot and not api_url:
        print("error: one of --api-url or --archive-snapshot is required", file=sys.stderr)
        return EXIT_USAGE

    closers = []
    try:
        options = load_options(config, overrides={
            "threshold": args.threshold,
            "offset": args.offset,
            "limit": args.limit,
            "dry_run": True if args.dry_run else None,
            "location_enhancement": True if args.location_enhancement else None,
        })
        raw = _load_input(args.input)

        if args.archive_snapshot:
            archive = InMemoryArchive.from_snapshot(args.archive_snapshot)
        else:
            archive = ArchiveApiClient(api_url, token=args.token or os.environ.get("MASS_IMPORT_TOKEN"))
            closers.append(archive)

        geocoder = None
        if options.location_enhancement:
            geocoder = NominatimGeocoder()
            closers.append(geocoder)

        tracker = ImportTracker(args.tracker_file)
        orchestrator = ImportOrchestrator(config, archive, geocoder=geocoder, tracker=tracker)
        report = orchestrator.run_source(importer, raw, options)

        if not options.dry_run:
            tracker.save()
        path = write_report(report, args.report_path)
    except MassImportError as e:
        print(f"error [{e.code}]: {e.message}", file=sys.stderr)
        return EXIT_USAGE
    except (OSError, json.JSONDecodeError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE
    finally:
        for client in closers:
            client.close()

    print(f"[artimport] Report: {path}")
    if report.aborted or report.error_count:
        return EXIT_ERRORS
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
