from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from ward_census.merger import FieldOwnership, merge_patients
from ward_census.records import (
    PATIENT_DATA,
    TRANSFERS,
    CensusRecord,
    EditRecord,
    MergedPatient,
    TransferRecord,
    edits_by_identity,
    latest_transfers,
)

LOGGER = logging.getLogger(__name__)

CENSUS_SOURCE = "census"
EDITS_SOURCE = "patient_data"
TRANSFERS_SOURCE = "transfers"


class CensusState:
    """Latest snapshot of each source plus the merged patients built from them."""

    def __init__(self, policy: Mapping[str, FieldOwnership] | None = None) -> None:
        self.policy = policy
        self.census: list[CensusRecord] = []
        self.edits: dict[str, EditRecord] = {}
        self.transfers: dict[str, TransferRecord] = {}
        self.census_sequence = -1
        self.patients: list[MergedPatient] = []
        self.errors: dict[str, str] = {}

    @property
    def stale(self) -> bool:
        return bool(self.errors)

    @property
    def last_error(self) -> str:
        if not self.errors:
            return ""
        return "; ".join(f"{source}: {message}" for source, message in self.errors.items())

    def _remerge(self) -> list[MergedPatient]:
        self.patients = merge_patients(self.census, self.edits, self.transfers, self.policy)
        return self.patients

    def apply_census(self, records: Iterable[CensusRecord], sequence: int) -> bool:
        if sequence < self.census_sequence:
            LOGGER.info(
                "Ignoring superseded census reload %d (latest applied %d).",
                sequence,
                self.census_sequence,
            )
            return False
        self.census_sequence = sequence
        self.census = list(records)
        self.errors.pop(CENSUS_SOURCE, None)
        self._remerge()
        return True

    def apply_edits(self, documents: Iterable[tuple[Any, dict[str, Any]]]) -> list[MergedPatient]:
        self.edits = edits_by_identity(documents)
        self.errors.pop(EDITS_SOURCE, None)
        return self._remerge()

    def apply_transfers(self, documents: Iterable[tuple[Any, dict[str, Any]]]) -> list[MergedPatient]:
        self.transfers = latest_transfers(documents)
        self.errors.pop(TRANSFERS_SOURCE, None)
        return self._remerge()

    def record_failure(self, source: str, error: Exception | str) -> None:
        LOGGER.warning("Source %s unavailable; keeping previous merged state: %s", source, error)
        self.errors[source] = str(error)

    def sync(self, store: Any) -> list[MergedPatient]:
        """Re-read edits and transfers, including writes from other store instances."""
        self.edits = edits_by_identity(store.snapshot(PATIENT_DATA))
        self.transfers = latest_transfers(store.snapshot(TRANSFERS))
        self.errors.pop(EDITS_SOURCE, None)
        self.errors.pop(TRANSFERS_SOURCE, None)
        return self._remerge()
