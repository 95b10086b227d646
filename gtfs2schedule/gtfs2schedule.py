#!/usr/bin/env python3
"""Project GTFS calendar/trips/stop_times into a per-station departure timetable."""

from __future__ import annotations

import argparse
import gzip
import io
import json
import logging
import re
import zipfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from stations import DEFAULT_REGISTRY, EASTBOUND, WESTBOUND, StationRegistry, load_station_registry

logger = logging.getLogger(__name__)

# first matching keyword wins
DAY_TYPE_KEYWORDS = ("weekday", "saturday", "sunday")

CALENDAR_COLUMNS = ["service_id"]
TRIP_COLUMNS = ["trip_id", "service_id", "direction_id"]
STOP_TIME_COLUMNS = ["trip_id", "stop_id", "departure_time"]

REQUIRED_TABLES = ("calendar.txt", "trips.txt", "stop_times.txt")

Timetable = dict[str, dict[str, dict[str, list[str]]]]
Row = Mapping[str, str]


@dataclass(frozen=True)
class GtfsTables:
    calendar: list[dict[str, str]]
    trips: list[dict[str, str]]
    stop_times: list[dict[str, str]]


def frame_to_rows(frame: pd.DataFrame) -> list[dict[str, str]]:
    frame = frame.rename(columns=lambda column: str(column).strip())
    frame = frame.fillna("")
    for column in frame.columns:
        frame[column] = frame[column].astype(str).str.strip()
    return frame.to_dict(orient="records")


def read_csv_frame(source: Any, **kwargs: Any) -> pd.DataFrame:
    return pd.read_csv(
        source,
        dtype=str,
        keep_default_na=False,
        skipinitialspace=True,
        index_col=False,
        **kwargs,
    )


def parse_csv(text: str) -> list[dict[str, str]]:
    """Parse a comma separated GTFS table into one dict per row.

    Values and headers are stripped; short rows are padded with empty strings.
    Quoted fields are honoured. Empty or unparsable input raises.
    """
    return frame_to_rows(read_csv_frame(io.StringIO(text.strip())))


def require_columns(rows: Iterable[Row], columns: list[str], table_name: str) -> None:
    for index, row in enumerate(rows):
        missing = [column for column in columns if column not in row]
        if missing:
            raise ValueError(f"{table_name} row {index} is missing required columns: {missing}")


def classify_service(service_id: str) -> str | None:
    lower = service_id.lower()
    for keyword in DAY_TYPE_KEYWORDS:
        if keyword in lower:
            return keyword
    return None


def slugify_service_id(service_id: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", service_id.lower()).rstrip("-")


def truncate_to_hhmm(value: str) -> str:
    # 24:10 stays 24:10 so that it sorts after 23:59
    return value[:5]


def create_empty_schedule(registry: StationRegistry = DEFAULT_REGISTRY) -> dict[str, dict[str, list[str]]]:
    return {direction: {key: [] for key in registry.keys} for direction in (WESTBOUND, EASTBOUND)}


def sort_schedule(schedule: Timetable) -> Timetable:
    for directions in schedule.values():
        for stations in directions.values():
            for times in stations.values():
                times.sort()
    return schedule


def build_schedule(
    calendar_rows: Iterable[Row],
    trip_rows: Iterable[Row],
    stop_time_rows: Iterable[Row],
    registry: StationRegistry = DEFAULT_REGISTRY,
) -> Timetable:
    """Build ``{day_type: {direction: {station_key: ["HH:MM", ...]}}}``.

    Services whose id contains no day-type keyword get their own entry keyed
    by the slugified service id. Rows pointing at unknown trips, stops,
    directions or services are skipped.
    """
    calendar_rows = list(calendar_rows)
    trip_rows = list(trip_rows)
    stop_time_rows = list(stop_time_rows)
    require_columns(calendar_rows, CALENDAR_COLUMNS, "calendar.txt")
    require_columns(trip_rows, TRIP_COLUMNS, "trips.txt")
    require_columns(stop_time_rows, STOP_TIME_COLUMNS, "stop_times.txt")

    trip_map: dict[str, tuple[str, str]] = {
        row["trip_id"]: (row["service_id"], row["direction_id"]) for row in trip_rows
    }

    service_day_types: dict[str, str] = {}
    special_services: dict[str, str] = {}
    for row in calendar_rows:
        service_id = row["service_id"]
        day_type = classify_service(service_id)
        if day_type:
            service_day_types[service_id] = day_type
        else:
            special_services[service_id] = slugify_service_id(service_id)

    schedule: Timetable = {}
    for key in [*service_day_types.values(), *special_services.values()]:
        if key not in schedule:
            schedule[key] = create_empty_schedule(registry)

    processed = 0
    skipped = 0
    for row in stop_time_rows:
        trip = trip_map.get(row["trip_id"])
        if trip is None:
            skipped += 1
            continue
        service_id, direction_id = trip

        station_key = registry.stop_id_to_key.get(row["stop_id"])
        if station_key is None:
            skipped += 1
            continue

        direction = registry.directions.get(direction_id)
        if direction is None:
            skipped += 1
            continue

        day_type = service_day_types.get(service_id) or special_services.get(service_id)
        if day_type is None:
            skipped += 1
            continue

        schedule[day_type][direction][station_key].append(truncate_to_hhmm(row["departure_time"]))
        processed += 1

    sort_schedule(schedule)

    logger.info("Processed %s stop times (%s skipped)", processed, skipped)
    logger.info("Day types: %s", ", ".join(schedule))
    return schedule


def build_schedule_from_csvs(
    calendar_csv: str,
    trips_csv: str,
    stop_times_csv: str,
    registry: StationRegistry = DEFAULT_REGISTRY,
) -> Timetable:
    return build_schedule(parse_csv(calendar_csv), parse_csv(trips_csv), parse_csv(stop_times_csv), registry)


def _read_tables_from_dir(gtfs_dir: Path) -> dict[str, list[dict[str, str]]]:
    tables: dict[str, list[dict[str, str]]] = {}
    for filename in REQUIRED_TABLES:
        file_path = gtfs_dir / filename
        file_path_gz = gtfs_dir / f"{filename}.gz"
        if file_path_gz.exists():
            logger.debug("Loading gzipped %s", file_path_gz)
            tables[filename] = frame_to_rows(
                read_csv_frame(file_path_gz, compression="gzip", encoding="utf-8-sig")
            )
        elif file_path.exists():
            logger.debug("Loading %s", file_path)
            tables[filename] = frame_to_rows(read_csv_frame(file_path, encoding="utf-8-sig"))
        else:
            raise FileNotFoundError(f"Missing GTFS file: {file_path}")
    return tables


def _read_tables_from_zip(zip_path: Path) -> dict[str, list[dict[str, str]]]:
    tables: dict[str, list[dict[str, str]]] = {}
    with zipfile.ZipFile(zip_path) as archive:
        members = archive.namelist()
        available = set(members)

        def find_member(filename: str) -> str | None:
            candidates = (filename, f"{filename}.gz")
            for candidate in candidates:
                if candidate in available:
                    return candidate
            for member in members:
                for candidate in candidates:
                    if member.endswith(f"/{candidate}"):
                        return member
            return None

        for filename in REQUIRED_TABLES:
            member = find_member(filename)
            if member is None:
                raise FileNotFoundError(f"Missing GTFS file in zip: {filename}")
            with archive.open(member) as file_obj:
                if member.endswith(".gz"):
                    with gzip.open(file_obj, mode="rt", encoding="utf-8-sig") as unzipped:
                        frame = read_csv_frame(unzipped)
                else:
                    frame = read_csv_frame(file_obj, encoding="utf-8-sig")
            tables[filename] = frame_to_rows(frame)
            logger.debug("Loaded %s from %s: %s rows", filename, member, len(tables[filename]))
    return tables


def read_gtfs_tables(gtfs_path: Path) -> GtfsTables:
    """Read the three tables the schedule needs from a GTFS directory or zip."""
    if not gtfs_path.exists():
        raise FileNotFoundError(f"GTFS feed not found: {gtfs_path}")
    if gtfs_path.is_dir():
        tables = _read_tables_from_dir(gtfs_path)
    else:
        tables = _read_tables_from_zip(gtfs_path)
    return GtfsTables(
        calendar=tables["calendar.txt"],
        trips=tables["trips.txt"],
        stop_times=tables["stop_times.txt"],
    )


def build_schedule_from_path(gtfs_path: Path, registry: StationRegistry = DEFAULT_REGISTRY) -> Timetable:
    logger.info("Building schedule from %s", gtfs_path)
    tables = read_gtfs_tables(gtfs_path)
    return build_schedule(tables.calendar, tables.trips, tables.stop_times, registry)


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Build a station timetable JSON from a GTFS feed")
    parser.add_argument("gtfs_path", help="GTFS directory or zip file")
    parser.add_argument("output_json", help="Where to write the timetable JSON")
    parser.add_argument("--stations", help="Optional station registry JSON")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    registry = load_station_registry(Path(args.stations)) if args.stations else DEFAULT_REGISTRY
    schedule = build_schedule_from_path(Path(args.gtfs_path), registry)
    write_json(Path(args.output_json), schedule)
    logger.info("Wrote %s", args.output_json)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
