from __future__ import annotations

import logging
import uuid
from dataclasses import asdict
from datetime import datetime
from typing import Any, Iterable, Mapping

from ward_census.document_store import WardDocumentStore
from ward_census.merger import DEFAULT_FIELD_POLICY, FieldOwnership
from ward_census.records import (
    ADMITTED,
    DISCHARGED,
    DISCHARGES,
    DOCUMENT_KEY_ALIASES,
    PATIENT_DATA,
    TRANSFERS,
    DischargeRecord,
    MergedPatient,
    Surgery,
    TrackingEntry,
    canonical_fields,
    clean_cell,
    discharge_record_from_document,
)

LOGGER = logging.getLogger(__name__)

_CAMEL_KEYS = {snake: camel for camel, snake in DOCUMENT_KEY_ALIASES.items()}


class PatientActionError(Exception):
    """Raised when a ward action cannot be applied."""


def _document_key(name: str) -> str:
    return _CAMEL_KEYS.get(name, name)


def _document_value(value: Any) -> Any:
    if isinstance(value, list):
        return [asdict(item) if hasattr(item, "__dataclass_fields__") else item for item in value]
    return value


def patient_document(patient: MergedPatient) -> dict[str, Any]:
    payload = {_document_key(name): _document_value(value) for name, value in asdict(patient).items()}
    payload.pop("is_ghost", None)
    return payload


def surgeries_from_rows(rows: Iterable[Mapping[str, Any]]) -> list[Surgery]:
    surgeries: list[Surgery] = []
    for row in rows:
        procedure = clean_cell(row.get("procedure"))
        if procedure:
            surgeries.append(Surgery(procedure, clean_cell(row.get("dop"))))
    return surgeries


def tracking_from_rows(rows: Iterable[Mapping[str, Any]]) -> list[TrackingEntry]:
    entries: list[TrackingEntry] = []
    for row in rows:
        parameter = clean_cell(row.get("parameter"))
        value = clean_cell(row.get("value"))
        if not parameter and not value:
            continue
        entries.append(
            TrackingEntry(
                id=clean_cell(row.get("id")) or uuid.uuid4().hex[:8],
                date=clean_cell(row.get("date")),
                parameter=parameter,
                value=value,
            )
        )
    return entries


def _require_identity(patient: MergedPatient) -> str:
    identity = (patient.hospital_no or "").strip()
    if not identity:
        raise PatientActionError("Patient has no hospital number.")
    return identity


def save_patient(
    store: WardDocumentStore,
    patient: MergedPatient,
    changes: Mapping[str, Any],
    now: datetime,
    policy: Mapping[str, FieldOwnership] | None = None,
) -> dict[str, Any]:
    identity = _require_identity(patient)
    field_policy = DEFAULT_FIELD_POLICY if policy is None else policy

    written: dict[str, Any] = {}
    for name, value in canonical_fields(dict(changes)).items():
        if name in ("hospital_no", "is_ghost"):
            continue
        # Census rows keep ownership of these; ghosts only exist through their edit record.
        if not patient.is_ghost and field_policy.get(name) is FieldOwnership.CENSUS:
            continue
        written[_document_key(name)] = _document_value(value)

    written["lastUpdated"] = now.isoformat()
    store.write(PATIENT_DATA, identity, written, merge=True)
    return written


def transfer_patient(
    store: WardDocumentStore,
    patient: MergedPatient,
    consultant: str,
    unit_id: int,
    now: datetime,
) -> str:
    identity = _require_identity(patient)
    if not consultant.strip():
        raise PatientActionError("Transfer requires a consultant.")

    transfer_id = store.add(
        TRANSFERS,
        {
            "hospitalNo": identity,
            "newConsultant": consultant.strip(),
            "unitId": unit_id,
            "timestamp": now.isoformat(),
        },
    )

    snapshot = patient_document(patient)
    snapshot["consultant"] = consultant.strip()
    snapshot["lastUpdated"] = now.isoformat()
    store.write(PATIENT_DATA, identity, snapshot, merge=True)
    LOGGER.info("Transferred %s to unit %s (%s).", identity, unit_id, consultant.strip())
    return transfer_id


def remove_patient(store: WardDocumentStore, hospital_no: str) -> int:
    identity = (hospital_no or "").strip()
    if not identity:
        raise PatientActionError("Patient has no hospital number.")

    removed = 0
    for doc_id, _fields in store.query(TRANSFERS, "hospitalNo", identity):
        if store.delete(TRANSFERS, doc_id):
            removed += 1
    if store.delete(PATIENT_DATA, identity):
        removed += 1

    if not removed:
        raise PatientActionError(f"No saved records found for {identity}.")
    return removed


def discharge_patient(
    store: WardDocumentStore,
    patient: MergedPatient,
    form: Mapping[str, Any],
    unit_id: int | None,
    now: datetime,
) -> str:
    identity = _require_identity(patient)
    discharge_id = store.add(
        DISCHARGES,
        {
            "hospitalNo": identity,
            "patient": patient_document(patient),
            "form": dict(form),
            "timestamp": now.isoformat(),
            "unitId": unit_id,
        },
    )
    store.write(PATIENT_DATA, identity, {"status": DISCHARGED}, merge=True)
    LOGGER.info("Discharged %s (record %s).", identity, discharge_id)
    return discharge_id


def revert_discharge(store: WardDocumentStore, discharge_id: str) -> DischargeRecord:
    payload = store.get(DISCHARGES, discharge_id)
    record = discharge_record_from_document(discharge_id, payload) if payload is not None else None
    if record is None:
        raise PatientActionError(f"Discharge record {discharge_id} not found.")

    store.delete(DISCHARGES, discharge_id)
    store.write(PATIENT_DATA, record.hospital_no, {"status": ADMITTED}, merge=True)
    LOGGER.info("Reverted discharge %s for %s.", discharge_id, record.hospital_no)
    return record


def list_discharges(store: WardDocumentStore) -> list[DischargeRecord]:
    records = [
        record
        for record in (discharge_record_from_document(doc_id, fields) for doc_id, fields in store.snapshot(DISCHARGES))
        if record is not None
    ]
    return sorted(records, key=lambda record: record.timestamp, reverse=True)
