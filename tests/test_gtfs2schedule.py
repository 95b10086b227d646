import gzip
import tempfile
import unittest
import zipfile
from pathlib import Path

from gtfs2schedule import gtfs2schedule as g2s
from stations import DEFAULT_REGISTRY, Station, StationRegistry


CALENDAR_CSV = "service_id,monday,saturday\nWeekday_2025,1,0\nSaturday_2025,0,1\n"
TRIPS_CSV = "route_id,service_id,trip_id,direction_id\nR1,Weekday_2025,T1,0\nR1,Saturday_2025,T2,1\n"
STOP_TIMES_CSV = (
    "trip_id,arrival_time,departure_time,stop_id,stop_sequence\n"
    "T1,08:05:00,08:05:00,1,1\n"
    "T1,08:01:00,08:01:00,2,2\n"
    "T2,09:00:00,09:00:00,14,1\n"
)


def small_registry() -> StationRegistry:
    return StationRegistry(
        stations=(Station("alpha", "Alpha"), Station("beta", "Beta")),
        stop_id_to_key={"A": "alpha", "B": "beta"},
        directions={"0": "westbound", "1": "eastbound"},
    )


class ParsingTests(unittest.TestCase):
    def test_parse_csv_strips_headers_and_values(self):
        rows = g2s.parse_csv("trip_id , stop_id,departure_time\r\n T1, 3 ,08:00:00\r\n")
        self.assertEqual(rows, [{"trip_id": "T1", "stop_id": "3", "departure_time": "08:00:00"}])

    def test_parse_csv_pads_short_rows(self):
        rows = g2s.parse_csv("a,b,c\n1,2\n")
        self.assertEqual(rows, [{"a": "1", "b": "2", "c": ""}])

    def test_parse_csv_keeps_leading_zeros(self):
        rows = g2s.parse_csv("stop_id\n007\n")
        self.assertEqual(rows[0]["stop_id"], "007")

    def test_parse_csv_empty_input_raises(self):
        with self.assertRaises(ValueError):
            g2s.parse_csv("")


class PrimitiveTests(unittest.TestCase):
    def test_classify_service_first_keyword_wins(self):
        self.assertEqual(g2s.classify_service("WEEKDAY-2025"), "weekday")
        self.assertEqual(g2s.classify_service("saturday_sunday"), "saturday")
        self.assertEqual(g2s.classify_service("Sunday Service"), "sunday")
        self.assertIsNone(g2s.classify_service("Thanksgiving"))

    def test_slugify_service_id(self):
        self.assertEqual(g2s.slugify_service_id("New Year's Day!!"), "new-year-s-day")
        self.assertEqual(g2s.slugify_service_id("Holiday__2025--"), "holiday-2025")

    def test_truncate_keeps_hours_past_midnight(self):
        self.assertEqual(g2s.truncate_to_hhmm("24:10:00"), "24:10")
        self.assertEqual(g2s.truncate_to_hhmm("08:01:30"), "08:01")

    def test_create_empty_schedule_covers_every_station(self):
        empty = g2s.create_empty_schedule()
        self.assertEqual(set(empty), {"westbound", "eastbound"})
        for stations in empty.values():
            self.assertEqual(list(stations), DEFAULT_REGISTRY.keys)
            self.assertTrue(all(times == [] for times in stations.values()))

    def test_empty_schedule_has_both_directions_for_one_sided_map(self):
        registry = StationRegistry(
            stations=(Station("a", "A"), Station("b", "B")),
            stop_id_to_key={"1": "a", "2": "b"},
            directions={"0": "westbound"},
        )
        schedule = g2s.build_schedule([{"service_id": "weekday"}], [], [], registry)
        self.assertEqual(set(schedule["weekday"]), {"westbound", "eastbound"})
        self.assertEqual(schedule["weekday"]["eastbound"], {"a": [], "b": []})


class BuildScheduleTests(unittest.TestCase):
    def test_weekday_westbound_times_are_sorted(self):
        schedule = g2s.build_schedule(
            [{"service_id": "weekday"}],
            [{"trip_id": "T1", "service_id": "weekday", "direction_id": "0"}],
            [
                {"trip_id": "T1", "stop_id": "1", "departure_time": "08:05:00"},
                {"trip_id": "T1", "stop_id": "2", "departure_time": "08:01:00"},
                {"trip_id": "T1", "stop_id": "1", "departure_time": "08:01:00"},
                {"trip_id": "T1", "stop_id": "2", "departure_time": "08:05:00"},
            ],
        )
        self.assertEqual(schedule["weekday"]["westbound"]["lindenwold"], ["08:01", "08:05"])
        self.assertEqual(schedule["weekday"]["westbound"]["ashland"], ["08:01", "08:05"])

    def test_every_entry_has_exact_registry_station_set(self):
        schedule = g2s.build_schedule_from_csvs(
            "service_id\nWeekday\nHoliday Service\n",
            "trip_id,service_id,direction_id\nT1,Weekday,1\n",
            "trip_id,stop_id,departure_time\nT1,5,10:00:00\n",
        )
        self.assertEqual(set(schedule), {"weekday", "holiday-service"})
        for directions in schedule.values():
            self.assertEqual(set(directions), {"westbound", "eastbound"})
            for stations in directions.values():
                self.assertEqual(set(stations), set(DEFAULT_REGISTRY.keys))
        self.assertEqual(schedule["weekday"]["eastbound"]["westmont"], ["10:00"])

    def test_special_services_get_slug_keys(self):
        schedule = g2s.build_schedule(
            [{"service_id": "July 4th"}],
            [{"trip_id": "T9", "service_id": "July 4th", "direction_id": "0"}],
            [{"trip_id": "T9", "stop_id": "A", "departure_time": "12:00:00"}],
            small_registry(),
        )
        self.assertEqual(schedule, {
            "july-4th": {
                "westbound": {"alpha": ["12:00"], "beta": []},
                "eastbound": {"alpha": [], "beta": []},
            }
        })

    def test_referential_gaps_are_skipped(self):
        schedule = g2s.build_schedule(
            [{"service_id": "weekday"}],
            [
                {"trip_id": "T1", "service_id": "weekday", "direction_id": "0"},
                {"trip_id": "T2", "service_id": "weekday", "direction_id": "7"},
                {"trip_id": "T3", "service_id": "not-in-calendar", "direction_id": "0"},
            ],
            [
                {"trip_id": "missing", "stop_id": "A", "departure_time": "06:00:00"},
                {"trip_id": "T1", "stop_id": "Z", "departure_time": "06:00:00"},
                {"trip_id": "T2", "stop_id": "A", "departure_time": "06:00:00"},
                {"trip_id": "T3", "stop_id": "A", "departure_time": "06:00:00"},
                {"trip_id": "T1", "stop_id": "B", "departure_time": "06:10:00"},
            ],
            small_registry(),
        )
        self.assertEqual(set(schedule), {"weekday"})
        self.assertEqual(schedule["weekday"]["westbound"], {"alpha": [], "beta": ["06:10"]})
        self.assertEqual(schedule["weekday"]["eastbound"], {"alpha": [], "beta": []})

    def test_times_after_midnight_sort_last(self):
        schedule = g2s.build_schedule(
            [{"service_id": "weekday"}],
            [{"trip_id": "T1", "service_id": "weekday", "direction_id": "1"}],
            [
                {"trip_id": "T1", "stop_id": "A", "departure_time": "24:10:00"},
                {"trip_id": "T1", "stop_id": "A", "departure_time": "23:59:00"},
                {"trip_id": "T1", "stop_id": "A", "departure_time": "00:30:00"},
            ],
            small_registry(),
        )
        self.assertEqual(schedule["weekday"]["eastbound"]["alpha"], ["00:30", "23:59", "24:10"])

    def test_duplicate_times_are_kept(self):
        schedule = g2s.build_schedule(
            [{"service_id": "sunday"}],
            [
                {"trip_id": "T1", "service_id": "sunday", "direction_id": "0"},
                {"trip_id": "T2", "service_id": "sunday", "direction_id": "0"},
            ],
            [
                {"trip_id": "T1", "stop_id": "A", "departure_time": "07:00:00"},
                {"trip_id": "T2", "stop_id": "A", "departure_time": "07:00:00"},
            ],
            small_registry(),
        )
        self.assertEqual(schedule["sunday"]["westbound"]["alpha"], ["07:00", "07:00"])

    def test_sorting_is_idempotent(self):
        schedule = g2s.build_schedule_from_csvs(CALENDAR_CSV, TRIPS_CSV, STOP_TIMES_CSV)
        resorted = g2s.sort_schedule({
            day: {direction: {k: list(v) for k, v in stations.items()} for direction, stations in directions.items()}
            for day, directions in schedule.items()
        })
        self.assertEqual(resorted, schedule)

    def test_missing_required_column_raises(self):
        with self.assertRaises(ValueError):
            g2s.build_schedule_from_csvs(
                CALENDAR_CSV,
                "trip_id,service_id\nT1,Weekday_2025\n",
                STOP_TIMES_CSV,
            )


class ReadTablesTests(unittest.TestCase):
    def write_feed(self, folder: Path, gzip_stop_times: bool = False) -> None:
        folder.mkdir(parents=True, exist_ok=True)
        (folder / "calendar.txt").write_text(CALENDAR_CSV, encoding="utf-8")
        (folder / "trips.txt").write_text(TRIPS_CSV, encoding="utf-8")
        if gzip_stop_times:
            with gzip.open(folder / "stop_times.txt.gz", "wt", encoding="utf-8") as fh:
                fh.write(STOP_TIMES_CSV)
        else:
            (folder / "stop_times.txt").write_text(STOP_TIMES_CSV, encoding="utf-8")

    def test_build_from_directory_with_gzipped_table(self):
        with tempfile.TemporaryDirectory() as tmp:
            feed_dir = Path(tmp) / "feed"
            self.write_feed(feed_dir, gzip_stop_times=True)
            schedule = g2s.build_schedule_from_path(feed_dir)
        self.assertEqual(schedule["weekday"]["westbound"]["lindenwold"], ["08:05"])
        self.assertEqual(schedule["weekday"]["westbound"]["ashland"], ["08:01"])
        self.assertEqual(schedule["saturday"]["eastbound"]["15-16th-locust"], ["09:00"])

    def test_gzipped_table_is_preferred_over_plain(self):
        with tempfile.TemporaryDirectory() as tmp:
            feed_dir = Path(tmp) / "feed"
            self.write_feed(feed_dir, gzip_stop_times=True)
            (feed_dir / "stop_times.txt").write_text(
                "trip_id,departure_time,stop_id\nT1,07:00:00,1\n", encoding="utf-8"
            )
            schedule = g2s.build_schedule_from_path(feed_dir)
        self.assertEqual(schedule["weekday"]["westbound"]["lindenwold"], ["08:05"])

    def test_build_from_zip_with_nested_folder(self):
        with tempfile.TemporaryDirectory() as tmp:
            zip_path = Path(tmp) / "feed.zip"
            with zipfile.ZipFile(zip_path, "w") as archive:
                archive.writestr("PATCO_GTFS/calendar.txt", CALENDAR_CSV)
                archive.writestr("PATCO_GTFS/trips.txt", TRIPS_CSV)
                archive.writestr("PATCO_GTFS/stop_times.txt", STOP_TIMES_CSV)
            tables = g2s.read_gtfs_tables(zip_path)
        self.assertEqual(len(tables.calendar), 2)
        self.assertEqual(tables.trips[0]["direction_id"], "0")
        self.assertEqual(tables.stop_times[2]["stop_id"], "14")

    def test_missing_table_raises(self):
        with tempfile.TemporaryDirectory() as tmp:
            feed_dir = Path(tmp)
            (feed_dir / "calendar.txt").write_text(CALENDAR_CSV, encoding="utf-8")
            with self.assertRaises(FileNotFoundError):
                g2s.read_gtfs_tables(feed_dir)

    def test_cli_writes_json(self):
        with tempfile.TemporaryDirectory() as tmp:
            feed_dir = Path(tmp) / "feed"
            self.write_feed(feed_dir)
            output = Path(tmp) / "out" / "gtfs_schedule.json"
            self.assertEqual(g2s.main([str(feed_dir), str(output)]), 0)
            self.assertIn('"weekday"', output.read_text(encoding="utf-8"))


if __name__ == "__main__":
    unittest.main()
