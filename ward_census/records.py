from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from dateutil import parser as dateutil_parser

LOGGER = logging.getLogger(__name__)

ADMITTED = "admitted"
MARKED_FOR_DISCHARGE = "marked_for_discharge"
DISCHARGED = "discharged"
ELECTIVE = "elective"

LIFECYCLE_STATUSES = {ADMITTED, MARKED_FOR_DISCHARGE, DISCHARGED, ELECTIVE}

PATIENT_DATA = "patient_data"
TRANSFERS = "transfers"
DISCHARGES = "discharges"

SPREADSHEET_ERROR_MARKERS = (
    "#NAME?",
    "#REF!",
    "#VALUE!",
    "#N/A",
    "#DIV/0!",
    "#NUM!",
    "#NULL!",
    "#ERROR!",
)

CENSUS_FIELDS = [
    "hospital_no",
    "ip_date",
    "in_pat_no",
    "name",
    "department",
    "consultant",
    "mobile",
    "age_gender",
    "bed_no",
    "diagnosis",
    "procedure",
    "npo_status",
]

TEXT_EDIT_FIELDS = [
    "ip_date",
    "in_pat_no",
    "name",
    "department",
    "consultant",
    "mobile",
    "age_gender",
    "bed_no",
    "diagnosis",
    "procedure",
    "dop",
    "plan",
    "npo_status",
    "history",
    "examination",
    "investigation",
    "address",
    "program_year",
    "program_block",
    "status",
    "last_updated",
]

# Document store payloads use the dashboard's camelCase keys.
DOCUMENT_KEY_ALIASES = {
    "hospitalNo": "hospital_no",
    "ipDate": "ip_date",
    "inPatNo": "in_pat_no",
    "ageGender": "age_gender",
    "bedNo": "bed_no",
    "npoStatus": "npo_status",
    "programYear": "program_year",
    "programBlock": "program_block",
    "lastUpdated": "last_updated",
    "newConsultant": "new_consultant",
    "unitId": "unit_id",
}


def _normalized_text(value: Any) -> str:
    return re.sub(r"[ \t]+", " ", str(value if value is not None else "").strip())


def is_error_marker(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    upper = value.upper()
    return any(marker in upper for marker in SPREADSHEET_ERROR_MARKERS)


def clean_cell(value: Any) -> str:
    if value is None:
        return ""
    text = _normalized_text(value)
    if is_error_marker(text):
        return ""
    return text


def _canonical_key(key: Any) -> str:
    text = str(key or "").strip()
    if text in DOCUMENT_KEY_ALIASES:
        return DOCUMENT_KEY_ALIASES[text]
    return re.sub(r"(?<!^)(?=[A-Z])", "_", text).lower()


def canonical_fields(fields: dict[str, Any] | None) -> dict[str, Any]:
    return {_canonical_key(key): value for key, value in (fields or {}).items()}


@dataclass
class Surgery:
    procedure: str
    dop: str = ""


@dataclass
class TrackingEntry:
    id: str
    date: str
    parameter: str
    value: str


@dataclass
class CensusRecord:
    hospital_no: str
    ip_date: str = ""
    in_pat_no: str = ""
    name: str = ""
    department: str = ""
    consultant: str = ""
    mobile: str = ""
    age_gender: str = ""
    bed_no: str = ""
    diagnosis: str = ""
    procedure: str = ""
    npo_status: str = ""
    status: str = ADMITTED


@dataclass
class EditRecord:
    hospital_no: str
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass
class TransferRecord:
    doc_id: str
    hospital_no: str
    new_consultant: str
    unit_id: int | None = None
    timestamp: str = ""


@dataclass
class DischargeRecord:
    doc_id: str
    hospital_no: str
    unit_id: int | None = None
    timestamp: str = ""
    patient: dict[str, Any] = field(default_factory=dict)
    form: dict[str, Any] = field(default_factory=dict)


@dataclass
class MergedPatient:
    hospital_no: str
    ip_date: str = ""
    in_pat_no: str = ""
    name: str = ""
    department: str = ""
    consultant: str = ""
    mobile: str = ""
    age_gender: str = ""
    bed_no: str = ""
    diagnosis: str = ""
    procedure: str = ""
    dop: str = ""
    surgeries: list[Surgery] = field(default_factory=list)
    plan: str = ""
    npo_status: str = ""
    history: str = ""
    examination: str = ""
    investigation: str = ""
    address: str = ""
    program_year: str = ""
    program_block: str = ""
    tracking: list[TrackingEntry] = field(default_factory=list)
    status: str = ADMITTED
    last_updated: str = ""
    is_ghost: bool = False

    @property
    def id(self) -> str:
        return self.hospital_no

    def procedures(self) -> list[Surgery]:
        items: list[Surgery] = []
        if self.procedure:
            items.append(Surgery(self.procedure, self.dop))
        items.extend(surgery for surgery in self.surgeries if surgery.procedure)
        return items


def _coerce_surgeries(value: Any) -> list[Surgery]:
    if not isinstance(value, list):
        return []
    surgeries: list[Surgery] = []
    for item in value:
        if isinstance(item, Surgery):
            surgeries.append(item)
        elif isinstance(item, dict):
            procedure = clean_cell(item.get("procedure"))
            if procedure:
                surgeries.append(Surgery(procedure, clean_cell(item.get("dop"))))
    return surgeries


def _coerce_tracking(value: Any) -> list[TrackingEntry]:
    if not isinstance(value, list):
        return []
    entries: list[TrackingEntry] = []
    for index, item in enumerate(value):
        if isinstance(item, TrackingEntry):
            entries.append(item)
        elif isinstance(item, dict):
            entries.append(
                TrackingEntry(
                    id=clean_cell(item.get("id")) or str(index),
                    date=clean_cell(item.get("date")),
                    parameter=clean_cell(item.get("parameter")),
                    value=clean_cell(item.get("value")),
                )
            )
    return entries


def _coerce_unit_id(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def edit_record_from_document(doc_id: Any, fields: dict[str, Any] | None) -> EditRecord | None:
    payload = canonical_fields(fields)
    hospital_no = clean_cell(doc_id) or clean_cell(payload.get("hospital_no"))
    if not hospital_no:
        LOGGER.warning("Skipping patient_data document without hospital number.")
        return None

    cleaned: dict[str, Any] = {}
    for key in TEXT_EDIT_FIELDS:
        if key not in payload:
            continue
        value = payload[key]
        if value is None or isinstance(value, (dict, list)):
            continue
        cleaned[key] = _normalized_text(value)
    if "surgeries" in payload:
        cleaned["surgeries"] = _coerce_surgeries(payload["surgeries"])
    if "tracking" in payload:
        cleaned["tracking"] = _coerce_tracking(payload["tracking"])

    status = str(cleaned.get("status", "")).lower()
    if status and status not in LIFECYCLE_STATUSES:
        LOGGER.info("Dropping unknown status %r for %s.", status, hospital_no)
        cleaned.pop("status")
    elif status:
        cleaned["status"] = status
    return EditRecord(hospital_no=hospital_no, fields=cleaned)


def transfer_record_from_document(doc_id: Any, fields: dict[str, Any] | None) -> TransferRecord | None:
    payload = canonical_fields(fields)
    hospital_no = clean_cell(payload.get("hospital_no"))
    if not hospital_no:
        LOGGER.warning("Skipping transfer %s without hospital number.", doc_id)
        return None
    return TransferRecord(
        doc_id=str(doc_id),
        hospital_no=hospital_no,
        new_consultant=clean_cell(payload.get("new_consultant")),
        unit_id=_coerce_unit_id(payload.get("unit_id")),
        timestamp=clean_cell(payload.get("timestamp")),
    )


def discharge_record_from_document(doc_id: Any, fields: dict[str, Any] | None) -> DischargeRecord | None:
    payload = dict(fields or {})
    hospital_no = clean_cell(payload.get("hospitalNo", payload.get("hospital_no")))
    if not hospital_no:
        LOGGER.warning("Skipping discharge %s without hospital number.", doc_id)
        return None
    patient = payload.get("patient")
    form = payload.get("form")
    return DischargeRecord(
        doc_id=str(doc_id),
        hospital_no=hospital_no,
        unit_id=_coerce_unit_id(payload.get("unitId", payload.get("unit_id"))),
        timestamp=clean_cell(payload.get("timestamp")),
        patient=dict(patient) if isinstance(patient, dict) else {},
        form=dict(form) if isinstance(form, dict) else {},
    )


def edits_by_identity(documents: Iterable[tuple[Any, dict[str, Any]]]) -> dict[str, EditRecord]:
    edits: dict[str, EditRecord] = {}
    for doc_id, fields in documents:
        record = edit_record_from_document(doc_id, fields)
        if record is not None:
            edits[record.hospital_no] = record
    return edits


def _timestamp_value(timestamp: str) -> datetime | None:
    if not timestamp:
        return None
    try:
        parsed = dateutil_parser.isoparse(timestamp)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed
    return parsed.replace(tzinfo=None) - parsed.utcoffset()


def latest_transfers(documents: Iterable[tuple[Any, dict[str, Any]]]) -> dict[str, TransferRecord]:
    latest: dict[str, TransferRecord] = {}
    for doc_id, fields in documents:
        record = transfer_record_from_document(doc_id, fields)
        if record is None:
            continue
        current = latest.get(record.hospital_no)
        if current is None:
            latest[record.hospital_no] = record
            continue
        current_time = _timestamp_value(current.timestamp)
        record_time = _timestamp_value(record.timestamp)
        if current_time is not None and record_time is not None and record_time < current_time:
            continue
        latest[record.hospital_no] = record
    return latest
