#!/usr/bin/env python3
"""Refresh the GTFS timetable and special schedule JSON files when the sources change."""

from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import os
import zipfile
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Callable

import requests
import tqdm
from dotenv import load_dotenv

from gtfs2schedule.gtfs2schedule import REQUIRED_TABLES, build_schedule_from_path
from scripts.schedule_sources import (
    GTFS_ZIP_URL,
    SpecialScheduleLink,
    download_bytes,
    download_file,
    fetch_gtfs_effective_date,
    fetch_special_schedules,
    html_fetcher,
)
from scripts.special_schedule_pdf import (
    BOUNDARY_THRESHOLD_MINUTES,
    ExtractionResult,
    extract_date_from_url,
    parse_special_schedule_pdf,
)
from stations import DEFAULT_REGISTRY, StationRegistry, load_station_registry

logger = logging.getLogger("update_schedule")

DEFAULT_DATA_DIR = Path("site/data")
DEFAULT_TEMP_DIR = Path("temp")


@dataclass(frozen=True)
class PipelinePaths:
    data_dir: Path
    temp_dir: Path
    metadata_path: Path
    gtfs_schedule_path: Path
    special_schedules_path: Path


def resolve_paths(data_dir: Path, temp_dir: Path) -> PipelinePaths:
    return PipelinePaths(
        data_dir=data_dir,
        temp_dir=temp_dir,
        metadata_path=data_dir / "metadata.json",
        gtfs_schedule_path=data_dir / "gtfs_schedule.json",
        special_schedules_path=data_dir / "special_schedules.json",
    )


def now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


def today_str() -> str:
    return dt.date.today().isoformat()


def load_json(path: Path) -> Any:
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def extract_gtfs_tables(zip_path: Path, output_dir: Path) -> list[Path]:
    """Unpack the tables the schedule needs, dropping any folder prefix inside the zip."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    with zipfile.ZipFile(zip_path) as archive:
        by_name = {Path(member).name: member for member in archive.namelist() if not member.endswith("/")}
        for filename in REQUIRED_TABLES:
            member = by_name.get(filename)
            if member is None:
                raise FileNotFoundError(f"{filename} not found in GTFS ZIP")
            target = output_dir / filename
            target.write_bytes(archive.read(member))
            logger.info("Extracted %s", filename)
            written.append(target)
    return written


def check_and_update_gtfs(
    metadata: dict[str, Any],
    paths: PipelinePaths,
    session: requests.Session,
    *,
    gtfs_url: str = GTFS_ZIP_URL,
    registry: StationRegistry = DEFAULT_REGISTRY,
    force: bool = False,
    fetch_html: Callable[[str], str] | None = None,
) -> bool:
    logger.info("Checking GTFS effective date...")
    effective_date = fetch_gtfs_effective_date(fetch_html or html_fetcher(session))
    logger.info("Effective date: %s", effective_date)

    previous = metadata.get("gtfs_effective_date")
    if previous == effective_date and not force:
        logger.info("GTFS schedule is up to date")
        return False
    logger.info("New GTFS schedule: %s -> %s", previous or "(none)", effective_date)

    zip_path = paths.temp_dir / "gtfs.zip"
    download_meta = download_file(session, gtfs_url, zip_path)
    logger.info("Downloaded %s bytes", download_meta["file_size"])

    extract_gtfs_tables(zip_path, paths.temp_dir)
    schedule = build_schedule_from_path(paths.temp_dir, registry)
    write_json(paths.gtfs_schedule_path, schedule)
    logger.info("Wrote %s", paths.gtfs_schedule_path)

    metadata["gtfs_effective_date"] = effective_date
    return True


def download_and_parse_pdf(
    session: requests.Session,
    pdf_url: str,
    registry: StationRegistry = DEFAULT_REGISTRY,
    boundary_threshold_minutes: int = BOUNDARY_THRESHOLD_MINUTES,
) -> ExtractionResult | None:
    logger.info("Downloading PDF from %s", pdf_url)
    data = download_bytes(session, pdf_url)
    return parse_special_schedule_pdf(
        data,
        registry,
        boundary_threshold_minutes=boundary_threshold_minutes,
    )


def merge_special_schedules(
    existing: dict[str, Any],
    entries: list[SpecialScheduleLink],
    parse_pdf: Callable[[str], ExtractionResult | None],
    today: str,
) -> bool:
    """Add newly published schedules to ``existing`` and prune past dates in place."""
    changed = False
    for entry in tqdm.tqdm(entries, desc="Special schedules", disable=None):
        date_str = extract_date_from_url(entry.pdf_url)
        if not date_str:
            logger.info("Could not extract date from: %s", entry.pdf_url)
            continue
        if date_str in existing:
            logger.info("Already have schedule for %s", date_str)
            continue
        if date_str < today:
            logger.info("Skipping past date: %s", date_str)
            continue

        logger.info("Parsing special schedule for %s...", date_str)
        try:
            parsed = parse_pdf(entry.pdf_url)
        except Exception as exc:
            logger.warning("Failed to parse %s: %s", entry.pdf_url, exc)
            continue
        if parsed is None:
            logger.info("No usable schedule in %s", entry.pdf_url)
            continue

        existing[date_str] = {
            **parsed,
            "pdf_url": entry.pdf_url,
            "date_label": entry.date_label,
        }
        changed = True
        logger.info("Added special schedule for %s", date_str)

    for key in [key for key in existing if key < today]:
        logger.info("Removing expired special schedule %s", key)
        del existing[key]
        changed = True

    return changed


def check_and_update_special_schedules(
    paths: PipelinePaths,
    session: requests.Session,
    *,
    today: str,
    registry: StationRegistry = DEFAULT_REGISTRY,
    boundary_threshold_minutes: int = BOUNDARY_THRESHOLD_MINUTES,
    fetch_html: Callable[[str], str] | None = None,
    parse_pdf: Callable[[str], ExtractionResult | None] | None = None,
) -> bool:
    logger.info("Checking for special schedule PDFs...")
    entries = fetch_special_schedules(fetch_html or html_fetcher(session))
    logger.info("Found %s special schedule(s) on site", len(entries))

    if not entries:
        write_json(paths.special_schedules_path, {})
        return False

    if parse_pdf is None:
        parse_pdf = partial(
            download_and_parse_pdf,
            session,
            registry=registry,
            boundary_threshold_minutes=boundary_threshold_minutes,
        )

    existing = load_json(paths.special_schedules_path) or {}
    changed = merge_special_schedules(existing, entries, parse_pdf, today)
    if changed:
        write_json(paths.special_schedules_path, existing)
        logger.info("Wrote %s", paths.special_schedules_path)
    return changed


def run_pipeline(
    paths: PipelinePaths,
    session: requests.Session,
    *,
    gtfs_url: str = GTFS_ZIP_URL,
    registry: StationRegistry = DEFAULT_REGISTRY,
    force_gtfs: bool = False,
    boundary_threshold_minutes: int = BOUNDARY_THRESHOLD_MINUTES,
    today: str | None = None,
) -> bool:
    today = today or today_str()
    logger.info("Timetable data pipeline, date: %s", today)
    paths.data_dir.mkdir(parents=True, exist_ok=True)

    metadata = load_json(paths.metadata_path) or {}
    any_changes = False

    try:
        any_changes = check_and_update_gtfs(
            metadata, paths, session, gtfs_url=gtfs_url, registry=registry, force=force_gtfs
        ) or any_changes
    except Exception as exc:
        logger.error("GTFS check failed: %s", exc)

    try:
        any_changes = check_and_update_special_schedules(
            paths,
            session,
            today=today,
            registry=registry,
            boundary_threshold_minutes=boundary_threshold_minutes,
        ) or any_changes
    except Exception as exc:
        logger.error("Special schedule check failed: %s", exc)

    metadata["last_check"] = now_iso()
    write_json(paths.metadata_path, metadata)

    if any_changes:
        logger.info("Data updated")
    else:
        logger.info("No changes detected")
    return any_changes


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check the GTFS feed and special schedule PDFs and refresh the timetable JSON."
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path(os.getenv("SCHEDULE_DATA_DIR") or DEFAULT_DATA_DIR),
        help="Directory for gtfs_schedule.json, special_schedules.json and metadata.json.",
    )
    parser.add_argument(
        "--temp-dir",
        type=Path,
        default=Path(os.getenv("SCHEDULE_TEMP_DIR") or DEFAULT_TEMP_DIR),
        help="Scratch directory for the downloaded GTFS zip.",
    )
    parser.add_argument(
        "--gtfs-url",
        default=os.getenv("SCHEDULE_GTFS_URL") or GTFS_ZIP_URL,
        help="GTFS zip download URL.",
    )
    parser.add_argument("--stations", type=Path, help="Optional station registry JSON.")
    parser.add_argument(
        "--force-gtfs",
        action="store_true",
        help="Rebuild the GTFS schedule even if the effective date did not change.",
    )
    parser.add_argument(
        "--boundary-threshold-minutes",
        type=int,
        default=BOUNDARY_THRESHOLD_MINUTES,
        help="Minimum backwards jump that marks the direction change in undelimited PDFs.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    registry = load_station_registry(args.stations) if args.stations else DEFAULT_REGISTRY
    paths = resolve_paths(args.data_dir, args.temp_dir)

    with requests.Session() as session:
        run_pipeline(
            paths,
            session,
            gtfs_url=args.gtfs_url,
            registry=registry,
            force_gtfs=args.force_gtfs,
            boundary_threshold_minutes=args.boundary_threshold_minutes,
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
