from __future__ import annotations

import re
from datetime import date
from typing import Any, Iterable

from ward_census.dates import days_between, format_display_date, normalize_date
from ward_census.records import MergedPatient, Surgery

SEPARATOR = "-" * 40
EMPTY_PLAN = "To be decided"
MISSING_VALUE = "N/A"


def _post_op_day(dop: str, today: date) -> int | None:
    diff = days_between(dop, today)
    if diff is None or diff > 0:
        return None
    return -diff


def _sorted_procedures(patient: MergedPatient) -> list[Surgery]:
    dated: list[tuple[tuple[int, int, int], Surgery]] = []
    undated: list[Surgery] = []
    for surgery in patient.procedures():
        canonical = normalize_date(surgery.dop)
        if canonical is None:
            undated.append(surgery)
        else:
            dated.append((canonical.sort_key, surgery))
    dated.sort(key=lambda item: item[0], reverse=True)
    return [surgery for _key, surgery in dated] + undated


def format_patient(patient: MergedPatient, today: date) -> str:
    procedures = _sorted_procedures(patient)

    procedure_lines: list[str] = []
    diagnosis_prefix = ""
    if procedures:
        latest = procedures[0]
        date_line = format_display_date(latest.dop, fallback=latest.dop)
        if date_line:
            procedure_lines.append(date_line)
        procedure_lines.append(latest.procedure)

        if len(procedures) > 1:
            older = procedures[1]
            older_pod = _post_op_day(older.dop, today)
            pod_text = f"{older_pod}POD " if older_pod is not None else ""
            diagnosis_prefix = f"{pod_text}{older.procedure} for "

    lines = [
        f"*Patient Name:* {patient.name}",
        f"*Age/Sex:* {patient.age_gender or MISSING_VALUE}",
        f"*Bed:* {patient.bed_no or MISSING_VALUE}",
        f"*Diagnosis:* {diagnosis_prefix}{patient.diagnosis or ''}",
        "",
        "*Procedure:*",
        *procedure_lines,
        "",
        "*Plan:*",
        patient.plan or EMPTY_PLAN,
    ]
    return "\n".join(lines)


def format_patient_list(label: str, patients: Iterable[MergedPatient], today: date) -> str:
    items = list(patients)
    header = "\n".join(
        [
            f"*Consultant:* {label}",
            f"*Date:* {format_display_date(today)}",
            f"*Total Patients:* {len(items)}",
            SEPARATOR,
        ]
    )
    body = f"\n\n{SEPARATOR}\n\n".join(
        f"[{index}] {format_patient(patient, today)}" for index, patient in enumerate(items, start=1)
    )
    return f"{header}\n\n{body}"


def discharge_form_defaults(patient: MergedPatient, today: date) -> dict[str, Any]:
    procedure_name = " + ".join(surgery.procedure for surgery in patient.procedures())

    management_parts = [patient.procedure] if patient.procedure else []
    management_parts.extend(f"{surgery.procedure} ({surgery.dop})" for surgery in patient.surgeries if surgery.procedure)
    management = patient.plan or ""
    if management_parts:
        procedure_text = f"Procedure: {', '.join(management_parts)}"
        management = f"{procedure_text}\n\n{management}" if management else procedure_text

    age_part = (patient.age_gender or "").split("/", 1)[0]
    return {
        "program_year": "",
        "program_block": "",
        "domain": "",
        "level": "",
        "procedure_name": procedure_name,
        "procedure_description": "",
        "date": today.isoformat(),
        "in_patient_id": patient.hospital_no,
        "patient_name": patient.name,
        "age": re.sub(r"\D", "", age_part),
        "address": patient.address,
        "history": "",
        "examination": "",
        "investigation": "",
        "provisional_diagnosis": patient.diagnosis,
        "final_diagnosis": patient.diagnosis,
        "management": management,
        "follow_up": "",
        "submitted_to": [],
    }
