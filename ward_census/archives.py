from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ward_census.dates import SystemClock

LOGGER = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 60 * 60
BROWSE_LIMIT = 50
SEARCH_LIMIT = 100


class ArchiveIndex:
    """Read-only search over the legacy admissions export (a JSON list of rows)."""

    def __init__(self, path: Path | str, ttl_seconds: int = CACHE_TTL_SECONDS, clock: Any = None) -> None:
        self.path = Path(path)
        self.ttl_seconds = ttl_seconds
        self.clock = clock or SystemClock()
        self._records: list[dict[str, Any]] | None = None
        self._loaded_at: float | None = None

    def _load(self) -> list[dict[str, Any]]:
        now = self.clock.now().timestamp()
        if self._records is not None and self._loaded_at is not None and now - self._loaded_at < self.ttl_seconds:
            return self._records

        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as error:
            LOGGER.warning("Archive %s unreadable: %s", self.path, error)
            return []
        if not isinstance(payload, list):
            LOGGER.warning("Archive %s is not a list of records.", self.path)
            return []

        self._records = [item for item in payload if isinstance(item, dict)]
        self._loaded_at = now
        return self._records

    def search(self, query: str) -> list[dict[str, Any]]:
        records = self._load()
        needle = str(query or "").strip().lower()
        if not needle:
            return records[:BROWSE_LIMIT]

        results: list[dict[str, Any]] = []
        for item in records:
            name = str(item.get("Patient Name", "") or "").lower()
            hospital_no = str(item.get("Hospital no", "") or "").lower()
            if needle in name or needle in hospital_no:
                results.append(item)
                if len(results) >= SEARCH_LIMIT:
                    break
        return results
