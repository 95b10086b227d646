#!/usr/bin/env python3
"""Recover eastbound/westbound station times from special schedule PDF text.

The PDFs lose their table layout when converted to text, so the times arrive
as one flat stream. Two layouts are handled:

* delimited: a "WESTBOUND TO PHILADELPHIA, PA" heading separates the two
  direction tables, and both sides contain times;
* undelimited: everything is one stream, and the switch from the first
  direction's late trains to the second direction's early trains is found by
  comparing times one row (station count) apart.

Tokens are then dealt to stations round-robin in travel order.
"""

from __future__ import annotations

import argparse
import io
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pdfplumber

from stations import DEFAULT_REGISTRY, EASTBOUND, WESTBOUND, StationRegistry

logger = logging.getLogger(__name__)

WESTBOUND_HEADING = "WESTBOUND TO PHILADELPHIA, PA"
SKIP_STOP_MARKER = "à"
BOUNDARY_THRESHOLD_MINUTES = 6 * 60

TIME_TOKEN_RE = re.compile(
    r"(?:1[0-2]|0?[1-9]):[0-5][0-9](?:\s*[AP]M?)?|" + SKIP_STOP_MARKER,
    re.IGNORECASE,
)
TWELVE_HOUR_RE = re.compile(r"^(\d{1,2}):(\d{2})\s*([AP])M?$", re.IGNORECASE)
URL_DATE_RE = re.compile(r"(\d{4}-\d{2}-\d{2})")

NOISE_PATTERNS = (
    re.compile(r"STATIONS CLOSED[^.]*\.\s*SERVICE RESUMES[^.]*"),
    re.compile(SKIP_STOP_MARKER + r" Indicates[^.]*"),
)

ExtractionResult = dict[str, dict[str, list[str]]]


@dataclass(frozen=True)
class DelimitedLayout:
    westbound_tokens: list[str]
    eastbound_tokens: list[str]


@dataclass(frozen=True)
class UndelimitedLayout:
    tokens: list[str]


def strip_noise(text: str) -> str:
    for pattern in NOISE_PATTERNS:
        text = pattern.sub("", text)
    return text


def find_time_tokens(text: str) -> list[str]:
    return TIME_TOKEN_RE.findall(text)


def is_skip_stop(token: str) -> bool:
    return SKIP_STOP_MARKER in token.lower()


def normalize_meridiem(token: str) -> str:
    """Turn "4:30A", "4:30 a" or "4:30AM" into "4:30 AM"."""
    raw = token.strip()
    raw = re.sub(r"\s*A(?:M)?\s*$", " AM", raw, flags=re.IGNORECASE)
    raw = re.sub(r"\s*P(?:M)?\s*$", " PM", raw, flags=re.IGNORECASE)
    return raw


def _twelve_hour_parts(value: str) -> tuple[int, int] | None:
    match = TWELVE_HOUR_RE.match(value.strip())
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2))
    is_pm = match.group(3).upper() == "P"
    if is_pm and hour != 12:
        hour += 12
    if not is_pm and hour == 12:
        hour = 0
    return hour, minute


def parse_twelve_hour_time(value: str) -> str | None:
    """Convert "H:MM AM/PM" to 24-hour "HH:MM"; None when there is no meridiem."""
    parts = _twelve_hour_parts(value)
    if parts is None:
        return None
    hour, minute = parts
    return f"{hour:02d}:{minute:02d}"


def time_token_to_minutes(token: str) -> int | None:
    parts = _twelve_hour_parts(token)
    if parts is None:
        return None
    hour, minute = parts
    return hour * 60 + minute


def find_direction_boundary(
    tokens: list[str],
    stride: int,
    threshold_minutes: int = BOUNDARY_THRESHOLD_MINUTES,
) -> int | None:
    """Index where the stream switches direction, or None.

    Compares each token with the one a full row (``stride`` tokens) earlier;
    a drop of more than ``threshold_minutes`` marks the first row of the
    second direction.
    """
    if stride <= 0:
        raise ValueError("stride must be positive")
    for index in range(stride, len(tokens), stride):
        previous = time_token_to_minutes(tokens[index - stride])
        current = time_token_to_minutes(tokens[index])
        if previous is None or current is None:
            continue
        if previous - current > threshold_minutes:
            return index
    return None


def detect_layout(text: str, heading: str = WESTBOUND_HEADING) -> DelimitedLayout | UndelimitedLayout:
    before, _, after = text.partition(heading)
    before_tokens = find_time_tokens(before)
    after_tokens = find_time_tokens(after)
    if before_tokens and after_tokens:
        return DelimitedLayout(westbound_tokens=before_tokens, eastbound_tokens=after_tokens)
    return UndelimitedLayout(tokens=find_time_tokens(text))


def split_directions(
    layout: DelimitedLayout | UndelimitedLayout,
    station_count: int,
    threshold_minutes: int = BOUNDARY_THRESHOLD_MINUTES,
) -> tuple[list[str], list[str]] | None:
    """Return ``(westbound_tokens, eastbound_tokens)`` for either layout."""
    if isinstance(layout, DelimitedLayout):
        logger.info(
            "Delimited layout: westbound=%s eastbound=%s tokens",
            len(layout.westbound_tokens),
            len(layout.eastbound_tokens),
        )
        return layout.westbound_tokens, layout.eastbound_tokens

    logger.info("Undelimited layout: %s tokens", len(layout.tokens))
    boundary = find_direction_boundary(layout.tokens, station_count, threshold_minutes)
    if boundary is None:
        logger.info("Could not find direction boundary in time data")
        return None
    logger.info(
        "Direction boundary at index %s: westbound=%s eastbound=%s tokens",
        boundary,
        boundary,
        len(layout.tokens) - boundary,
    )
    return layout.tokens[:boundary], layout.tokens[boundary:]


def distribute_times_to_stations(tokens: list[str], station_keys: list[str]) -> dict[str, list[str]]:
    """Deal tokens to stations in order; skip-stops and unparsable times keep their slot."""
    station_times: dict[str, list[str]] = {key: [] for key in station_keys}
    for index, token in enumerate(tokens):
        station = station_keys[index % len(station_keys)]
        if is_skip_stop(token):
            continue
        time_value = parse_twelve_hour_time(normalize_meridiem(token))
        if time_value:
            station_times[station].append(time_value)
    return station_times


def has_departures(result: ExtractionResult) -> bool:
    return any(times for stations in result.values() for times in stations.values())


def extract_schedule(
    raw_text: str,
    registry: StationRegistry = DEFAULT_REGISTRY,
    *,
    heading: str = WESTBOUND_HEADING,
    boundary_threshold_minutes: int = BOUNDARY_THRESHOLD_MINUTES,
) -> ExtractionResult | None:
    """Parse special schedule text into ``{"eastbound": ..., "westbound": ...}``.

    Returns None when the direction split cannot be found or when no station
    received a single time.
    """
    clean = strip_noise(raw_text)
    layout = detect_layout(clean, heading)
    split = split_directions(layout, len(registry.stations), boundary_threshold_minutes)
    if split is None:
        return None
    westbound_tokens, eastbound_tokens = split

    result = {
        EASTBOUND: distribute_times_to_stations(eastbound_tokens, registry.keys_for_direction(EASTBOUND)),
        WESTBOUND: distribute_times_to_stations(westbound_tokens, registry.keys_for_direction(WESTBOUND)),
    }
    if not has_departures(result):
        logger.info("Special schedule parsed but contained no departure times")
        return None
    return result


def extract_date_from_url(url: str) -> str | None:
    match = URL_DATE_RE.search(url)
    return match.group(1) if match else None


def extract_text_from_pdf(data: bytes) -> str:
    """Concatenate the words of every page; positions are discarded."""
    pages: list[str] = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            words = page.extract_words(x_tolerance=2, y_tolerance=2)
            pages.append(" ".join(word["text"] for word in words))
    return "\n".join(pages)


def parse_special_schedule_pdf(
    data: bytes,
    registry: StationRegistry = DEFAULT_REGISTRY,
    *,
    boundary_threshold_minutes: int = BOUNDARY_THRESHOLD_MINUTES,
) -> ExtractionResult | None:
    text = extract_text_from_pdf(data)
    logger.info("PDF text length: %s", len(text))
    return extract_schedule(text, registry, boundary_threshold_minutes=boundary_threshold_minutes)


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extract station times from a special schedule PDF")
    parser.add_argument("input", help="PDF file, or a .txt file with already extracted text")
    parser.add_argument("--json-out", help="Write the result here instead of stdout")
    parser.add_argument(
        "--boundary-threshold-minutes",
        type=int,
        default=BOUNDARY_THRESHOLD_MINUTES,
        help="Minimum backwards jump that marks the direction change.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    input_path = Path(args.input)
    if input_path.suffix.lower() == ".pdf":
        result = parse_special_schedule_pdf(
            input_path.read_bytes(),
            boundary_threshold_minutes=args.boundary_threshold_minutes,
        )
    else:
        result = extract_schedule(
            input_path.read_text(encoding="utf-8"),
            boundary_threshold_minutes=args.boundary_threshold_minutes,
        )

    if result is None:
        logger.warning("No special schedule could be extracted from %s", input_path)
        return 1

    if args.json_out:
        write_json(Path(args.json_out), result)
        logger.info("Wrote %s", args.json_out)
    else:
        print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
