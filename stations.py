"""Station registry shared by the GTFS schedule builder and the PDF extractor."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

WESTBOUND = "westbound"
EASTBOUND = "eastbound"


@dataclass(frozen=True)
class Station:
    key: str
    name: str


@dataclass(frozen=True)
class StationRegistry:
    """Stations in westbound order plus the GTFS id mappings."""

    stations: tuple[Station, ...]
    stop_id_to_key: dict[str, str]
    directions: dict[str, str]

    @property
    def keys(self) -> list[str]:
        return [station.key for station in self.stations]

    @property
    def westbound_keys(self) -> list[str]:
        return self.keys

    @property
    def eastbound_keys(self) -> list[str]:
        return list(reversed(self.keys))

    def keys_for_direction(self, direction: str) -> list[str]:
        if direction == WESTBOUND:
            return self.westbound_keys
        if direction == EASTBOUND:
            return self.eastbound_keys
        raise ValueError(f"Unknown direction: {direction}")


DEFAULT_STATIONS = (
    Station("lindenwold", "Lindenwold"),
    Station("ashland", "Ashland"),
    Station("woodcrest", "Woodcrest"),
    Station("haddonfield", "Haddonfield"),
    Station("westmont", "Westmont"),
    Station("collingswood", "Collingswood"),
    Station("ferry-ave", "Ferry Avenue"),
    Station("broadway", "Broadway"),
    Station("city-hall", "City Hall"),
    Station("franklin-square", "Franklin Square"),
    Station("8th-market", "8th & Market"),
    Station("9-10th-locust", "9/10th & Locust"),
    Station("12-13th-locust", "12/13th & Locust"),
    Station("15-16th-locust", "15/16th & Locust"),
)

# GTFS stop_id values follow the westbound order
DEFAULT_STOP_ID_TO_KEY = {str(index): station.key for index, station in enumerate(DEFAULT_STATIONS, start=1)}
DEFAULT_DIRECTIONS = {"0": WESTBOUND, "1": EASTBOUND}

DEFAULT_REGISTRY = StationRegistry(
    stations=DEFAULT_STATIONS,
    stop_id_to_key=DEFAULT_STOP_ID_TO_KEY,
    directions=DEFAULT_DIRECTIONS,
)


def load_station_registry(path: Path) -> StationRegistry:
    """Load a registry from JSON.

    Expected shape::

        {
          "stations": [{"key": "lindenwold", "name": "Lindenwold", "stop_id": "1"}, ...],
          "directions": {"0": "westbound", "1": "eastbound"}
        }

    ``stations`` is listed in westbound order. ``stop_id`` and ``directions``
    are optional and fall back to positional ids and the default mapping.
    """
    payload = json.loads(path.read_text(encoding="utf-8"))
    entries = payload.get("stations")
    if not entries:
        raise ValueError(f"Station registry {path} has no stations")

    stations: list[Station] = []
    stop_id_to_key: dict[str, str] = {}
    for index, entry in enumerate(entries, start=1):
        if "key" not in entry:
            raise ValueError(f"Station #{index} in {path} is missing a key")
        station = Station(key=str(entry["key"]), name=str(entry.get("name") or entry["key"]))
        stations.append(station)
        stop_id_to_key[str(entry.get("stop_id", index))] = station.key

    directions = {str(k): str(v) for k, v in payload.get("directions", DEFAULT_DIRECTIONS).items()}
    unknown = set(directions.values()) - {WESTBOUND, EASTBOUND}
    if unknown:
        raise ValueError(f"Unsupported direction names in {path}: {sorted(unknown)}")
    if set(directions.values()) != {WESTBOUND, EASTBOUND}:
        raise ValueError(f"Direction map in {path} must cover both {WESTBOUND} and {EASTBOUND}")

    return StationRegistry(
        stations=tuple(stations),
        stop_id_to_key=stop_id_to_key,
        directions=directions,
    )
