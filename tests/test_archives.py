from __future__ import annotations

import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ward_census.archives import ArchiveIndex


class _MutableClock:
    def __init__(self) -> None:
        self.moment = datetime(2024, 6, 5, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.moment


class ArchiveIndexTests(unittest.TestCase):
    def test_search_by_name_or_hospital_number(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "archive.json"
            rows = [{"Patient Name": f"Patient {index}", "Hospital no": f"HN{index:03d}"} for index in range(120)]
            rows.append({"Patient Name": "Kamala Thapa", "Hospital no": "K-1"})
            path.write_text(json.dumps(rows), encoding="utf-8")

            index = ArchiveIndex(path)

            self.assertEqual(len(index.search("")), 50)
            self.assertEqual(len(index.search("patient")), 100)
            self.assertEqual(index.search("THAPA"), [rows[-1]])
            self.assertEqual(index.search("hn007"), [rows[7]])

    def test_cache_expires_after_ttl(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "archive.json"
            path.write_text(json.dumps([{"Patient Name": "Old"}]), encoding="utf-8")
            clock = _MutableClock()
            index = ArchiveIndex(path, ttl_seconds=60, clock=clock)

            self.assertEqual(len(index.search("old")), 1)
            path.write_text(json.dumps([{"Patient Name": "New"}]), encoding="utf-8")
            self.assertEqual(len(index.search("new")), 0)

            clock.moment += timedelta(seconds=61)
            self.assertEqual(len(index.search("new")), 1)

    def test_unreadable_archive_returns_nothing(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            missing = ArchiveIndex(Path(tmpdir) / "missing.json")
            with self.assertLogs("ward_census.archives", level="WARNING"):
                self.assertEqual(missing.search("x"), [])

            not_a_list = Path(tmpdir) / "object.json"
            not_a_list.write_text(json.dumps({"Patient Name": "x"}), encoding="utf-8")
            self.assertEqual(ArchiveIndex(not_a_list).search(""), [])


if __name__ == "__main__":
    unittest.main()
