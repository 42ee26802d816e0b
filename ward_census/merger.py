from __future__ import annotations

import logging
from dataclasses import fields as dataclass_fields
from enum import Enum
from typing import Any, Iterable, Mapping

from ward_census.records import (
    ADMITTED,
    CENSUS_FIELDS,
    ELECTIVE,
    CensusRecord,
    EditRecord,
    MergedPatient,
    TransferRecord,
    clean_cell,
    is_error_marker,
)

LOGGER = logging.getLogger(__name__)

GHOST_NAME = "Unknown Patient (Left Census)"
GHOST_AGE_GENDER = "N/A"
GHOST_IP_DATE = "Unknown"


class FieldOwnership(Enum):
    CENSUS = "census"
    FILL_IF_EMPTY = "fill_if_empty"
    EDIT = "edit"


CENSUS_AUTHORITATIVE_FIELDS = (
    "hospital_no",
    "bed_no",
    "name",
    "age_gender",
    "consultant",
    "ip_date",
    "status",
)

DEFAULT_FIELD_POLICY: dict[str, FieldOwnership] = {
    name: FieldOwnership.CENSUS for name in CENSUS_AUTHORITATIVE_FIELDS
}

_PATIENT_FIELDS = {item.name for item in dataclass_fields(MergedPatient)} - {"hospital_no", "is_ghost"}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return not value
    return False


def _copy_value(value: Any) -> Any:
    return list(value) if isinstance(value, list) else value


def _usable_edit_fields(edit: EditRecord) -> dict[str, Any]:
    usable: dict[str, Any] = {}
    for key, value in edit.fields.items():
        if key not in _PATIENT_FIELDS:
            continue
        if _is_blank(value) or is_error_marker(value):
            continue
        usable[key] = value
    return usable


def _collapse_census(census: Iterable[CensusRecord]) -> dict[str, CensusRecord]:
    by_identity: dict[str, CensusRecord] = {}
    for record in census:
        identity = clean_cell(record.hospital_no)
        if not identity:
            LOGGER.warning("Skipping census row without hospital number (bed %r).", record.bed_no)
            continue
        existing = by_identity.get(identity)
        if existing is None:
            by_identity[identity] = record
            continue
        LOGGER.info("Duplicate census row for %s; filling blanks from later row.", identity)
        for name in CENSUS_FIELDS:
            if not getattr(existing, name) and getattr(record, name):
                setattr(existing, name, getattr(record, name))
    return by_identity


def _patient_from_census(identity: str, record: CensusRecord) -> MergedPatient:
    patient = MergedPatient(hospital_no=identity)
    for name in CENSUS_FIELDS:
        if name == "hospital_no":
            continue
        setattr(patient, name, clean_cell(getattr(record, name)))
    patient.status = ELECTIVE if record.status == ELECTIVE else ADMITTED
    return patient


def _apply_edit(
    patient: MergedPatient,
    edit: EditRecord,
    policy: Mapping[str, FieldOwnership],
) -> None:
    for key, value in _usable_edit_fields(edit).items():
        ownership = policy.get(key, FieldOwnership.FILL_IF_EMPTY)
        if ownership is FieldOwnership.CENSUS:
            continue
        if ownership is FieldOwnership.EDIT or _is_blank(getattr(patient, key)):
            setattr(patient, key, _copy_value(value))


def _ghost_patient(
    identity: str,
    edit: EditRecord | None,
    transfer: TransferRecord | None,
) -> MergedPatient:
    saved = _usable_edit_fields(edit) if edit is not None else {}
    patient = MergedPatient(hospital_no=identity)
    for key, value in saved.items():
        setattr(patient, key, _copy_value(value))

    patient.name = str(saved.get("name", "")) or GHOST_NAME
    patient.age_gender = str(saved.get("age_gender", "")) or GHOST_AGE_GENDER
    patient.bed_no = ""
    patient.ip_date = str(saved.get("ip_date", "")) or GHOST_IP_DATE
    transfer_consultant = transfer.new_consultant if transfer is not None else ""
    patient.consultant = transfer_consultant or str(saved.get("consultant", ""))
    patient.status = str(saved.get("status", "")) or ADMITTED
    patient.is_ghost = True
    return patient


def merge_patients(
    census: Iterable[CensusRecord],
    edits: Mapping[str, EditRecord],
    transfers: Mapping[str, TransferRecord],
    policy: Mapping[str, FieldOwnership] | None = None,
) -> list[MergedPatient]:
    """Reconcile the census, clinician edits and transfers into one record per patient.

    Census-owned fields keep the census value, the latest transfer overrides
    the consultant, and other edited fields only fill blanks. Identities known
    to edits or transfers but absent from the census come back as ghosts with
    no bed. Pure: inputs are never mutated and repeated calls give equal output.
    """
    field_policy = DEFAULT_FIELD_POLICY if policy is None else policy
    census_by_identity = _collapse_census(
        CensusRecord(**vars(record)) for record in census
    )

    merged: list[MergedPatient] = []
    for identity, record in census_by_identity.items():
        patient = _patient_from_census(identity, record)

        transfer = transfers.get(identity)
        if transfer is not None and transfer.new_consultant:
            patient.consultant = transfer.new_consultant

        edit = edits.get(identity)
        if edit is not None:
            _apply_edit(patient, edit, field_policy)
        merged.append(patient)

    tracked = {clean_cell(identity) for identity in list(edits) + list(transfers)}
    ghost_ids = sorted(identity for identity in tracked if identity and identity not in census_by_identity)
    for identity in ghost_ids:
        edit = edits.get(identity)
        transfer = transfers.get(identity)
        if edit is None and transfer is None:
            continue
        merged.append(_ghost_patient(identity, edit, transfer))

    if ghost_ids:
        LOGGER.info("Merged %d census patients and %d ghost patients.", len(census_by_identity), len(ghost_ids))
    return merged
