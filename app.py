from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Any

import pandas as pd
import streamlit as st

from ward_census.archives import ArchiveIndex
from ward_census.census_state import CENSUS_SOURCE, CensusState
from ward_census.dates import SystemClock, format_display_date
from ward_census.document_store import WardDocumentStore
from ward_census.formatter import discharge_form_defaults, format_patient, format_patient_list
from ward_census.records import (
    ADMITTED,
    MARKED_FOR_DISCHARGE,
    PATIENT_DATA,
    TRANSFERS,
    MergedPatient,
)
from ward_census.bed_zones import zone_rule_to_config, zone_rules_from_config
from ward_census.settings import (
    ConfigError,
    configure_logging,
    load_ward_config,
    read_settings,
    save_zone_order,
)
from ward_census.sheets import SourceUnavailableError, WorkbookSource, load_census
from ward_census.views import (
    ViewKind,
    ViewSpec,
    project,
    unit_census_count,
)
from ward_census.ward_actions import (
    PatientActionError,
    discharge_patient,
    list_discharges,
    remove_patient,
    revert_discharge,
    save_patient,
    surgeries_from_rows,
    tracking_from_rows,
    transfer_patient,
)

APP_TITLE = "Ward Census"
CLOCK = SystemClock()
SURGERY_COLUMNS = ["procedure", "dop"]
TRACKING_COLUMNS = ["id", "date", "parameter", "value"]
ZONE_COLUMNS = ["name", "prefix", "match", "exclude", "specific"]

SETTINGS = read_settings()
configure_logging(SETTINGS.log_level)

st.set_page_config(page_title=APP_TITLE, layout="wide")


def _streamlit_user_obj() -> Any:
    if hasattr(st, "user"):
        try:
            return st.user
        except Exception:
            return None
    return None


def _user_email(user_obj: Any) -> str:
    if user_obj is None:
        return ""
    if isinstance(user_obj, dict):
        return str(user_obj.get("email", "")).strip().lower()
    value = getattr(user_obj, "email", "")
    return str(value or "").strip().lower()


def _user_logged_in(user_obj: Any) -> bool:
    if user_obj is None:
        return False
    value = getattr(user_obj, "is_logged_in", None)
    if isinstance(value, bool):
        return value
    return bool(_user_email(user_obj))


def _enforce_allowed_users() -> None:
    allowed = SETTINGS.allowed_users
    if not SETTINGS.enable_access_gate or not allowed:
        return

    user_obj = _streamlit_user_obj()
    email = _user_email(user_obj)
    if not _user_logged_in(user_obj):
        st.title(APP_TITLE)
        st.warning("Sign-in required. Access is restricted to allowed users.")
        if hasattr(st, "login") and st.button("Sign in", type="primary", use_container_width=True):
            st.login()
        st.stop()

    if email not in allowed:
        st.error(f"Access denied for `{email or 'unknown user'}`.")
        if hasattr(st, "logout") and st.button("Sign out", use_container_width=True):
            st.logout()
        st.stop()

    st.sidebar.caption(f"Signed in: {email}")


def _session_store() -> WardDocumentStore:
    if "ward_store" not in st.session_state:
        st.session_state.ward_store = WardDocumentStore(SETTINGS.db_path)
    return st.session_state.ward_store


def _session_census(store: WardDocumentStore) -> CensusState:
    if "census_state" not in st.session_state:
        census_state = CensusState()
        store.subscribe(PATIENT_DATA, census_state.apply_edits)
        store.subscribe(TRANSFERS, census_state.apply_transfers)
        st.session_state.census_state = census_state
        st.session_state.census_sequence = 0
        _reload_census(census_state)
    census_state = st.session_state.census_state
    # Other sessions write through their own store instance.
    census_state.sync(store)
    return census_state


def _reload_census(census_state: CensusState) -> None:
    st.session_state.census_sequence = st.session_state.get("census_sequence", 0) + 1
    sequence = st.session_state.census_sequence
    try:
        records = load_census(
            WorkbookSource(SETTINGS.census_source),
            SETTINGS.admitted_range,
            SETTINGS.elective_range,
        )
    except SourceUnavailableError as error:
        census_state.record_failure(CENSUS_SOURCE, error)
        return
    census_state.apply_census(records, sequence)


def _patient_rows(patients: list[MergedPatient]) -> list[dict[str, Any]]:
    return [
        {
            "Bed": patient.bed_no or ("(left census)" if patient.is_ghost else ""),
            "Hospital No": patient.hospital_no,
            "Name": patient.name,
            "Age/Sex": patient.age_gender,
            "Consultant": patient.consultant,
            "IP Date": patient.ip_date,
            "Diagnosis": patient.diagnosis,
            "Procedure": patient.procedure,
            "Status": patient.status,
        }
        for patient in patients
    ]


def _render_patients(patients: list[MergedPatient]) -> None:
    if not patients:
        st.caption("No patients.")
        return
    st.dataframe(pd.DataFrame(_patient_rows(patients)), use_container_width=True, hide_index=True)


def _render_bulk_text(label: str, patients: list[MergedPatient], today: date) -> None:
    if not patients:
        return
    with st.expander(f"Copy text: {label}", expanded=False):
        st.code(format_patient_list(label, patients, today), language=None)


def _editor_frame(rows: list[dict[str, Any]], columns: list[str]) -> pd.DataFrame:
    return pd.DataFrame(rows, columns=columns).astype(str)


def _editor_rows(frame: pd.DataFrame) -> list[dict[str, Any]]:
    return frame.fillna("").to_dict(orient="records")


def _render_bed_map(unit_id: int) -> None:
    rules = WARD_CONFIG.zone_rules_for_unit(unit_id)
    rows = []
    for rule in rules:
        payload = zone_rule_to_config(rule)
        payload["exclude"] = ", ".join(payload.get("exclude", []))
        payload["specific"] = ", ".join(payload.get("specific", []))
        rows.append(payload)
    st.caption("Zones are listed in display order. Separate several beds with commas.")
    with st.form(f"bed_map_{unit_id}"):
        edited = st.data_editor(
            _editor_frame(rows, ZONE_COLUMNS),
            num_rows="dynamic",
            use_container_width=True,
            hide_index=True,
            key=f"bed_map_editor_{unit_id}",
        )
        submitted = st.form_submit_button("Save bed order")
    if submitted:
        try:
            save_zone_order(str(SETTINGS.config_path), unit_id, zone_rules_from_config(_editor_rows(edited)))
        except ConfigError as error:
            st.error(str(error))
        else:
            st.success("Bed order saved.")
            st.rerun()


def _render_patient_editor(
    census_state: CensusState,
    store: WardDocumentStore,
    unit_patients: list[MergedPatient],
    unit_id: int,
) -> None:
    if not unit_patients:
        return
    labels = {f"{patient.bed_no or '-'} | {patient.name} | {patient.hospital_no}": patient for patient in unit_patients}
    choice = st.selectbox("Patient", list(labels), key=f"patient_pick_{unit_id}")
    patient = labels[choice]
    today = CLOCK.today()

    st.text(format_patient(patient, today))
    edit_tab, transfer_tab, discharge_tab = st.tabs(["Edit", "Transfer", "Discharge"])

    with edit_tab:
        with st.form(f"edit_{patient.hospital_no}"):
            diagnosis = st.text_input("Diagnosis", value=patient.diagnosis)
            procedure = st.text_input("Procedure", value=patient.procedure)
            dop = st.text_input("Date of procedure", value=patient.dop)
            st.caption("Additional surgeries")
            surgeries = st.data_editor(
                _editor_frame([asdict(surgery) for surgery in patient.surgeries], SURGERY_COLUMNS),
                num_rows="dynamic",
                use_container_width=True,
                hide_index=True,
                key=f"surgeries_{patient.hospital_no}",
            )
            plan = st.text_area("Plan", value=patient.plan)
            npo_status = st.text_input("NPO status", value=patient.npo_status)
            history = st.text_area("History", value=patient.history)
            examination = st.text_area("Examination", value=patient.examination)
            investigation = st.text_area("Investigation", value=patient.investigation)
            address = st.text_input("Address", value=patient.address)
            year_col, block_col = st.columns(2)
            program_year = year_col.text_input("Program year", value=patient.program_year)
            program_block = block_col.text_input("Program block", value=patient.program_block)
            st.caption("Tracking")
            tracking = st.data_editor(
                _editor_frame([asdict(entry) for entry in patient.tracking], TRACKING_COLUMNS),
                num_rows="dynamic",
                use_container_width=True,
                hide_index=True,
                column_config={"id": None},
                key=f"tracking_{patient.hospital_no}",
            )
            # Census rows own the status; only patients who left the census can be marked.
            marked = patient.is_ghost and st.checkbox(
                "Mark for discharge", value=patient.status == MARKED_FOR_DISCHARGE
            )
            submitted = st.form_submit_button("Save")
        if submitted:
            changes = {
                "diagnosis": diagnosis,
                "procedure": procedure,
                "dop": dop,
                "surgeries": surgeries_from_rows(_editor_rows(surgeries)),
                "plan": plan,
                "npo_status": npo_status,
                "history": history,
                "examination": examination,
                "investigation": investigation,
                "address": address,
                "program_year": program_year,
                "program_block": program_block,
                "tracking": tracking_from_rows(_editor_rows(tracking)),
            }
            if patient.is_ghost:
                changes["status"] = MARKED_FOR_DISCHARGE if marked else ADMITTED
            save_patient(store, patient, changes, CLOCK.now())
            st.success("Patient details saved.")
        if patient.is_ghost and st.button("Remove patient", key=f"remove_{patient.hospital_no}"):
            try:
                remove_patient(store, patient.hospital_no)
            except PatientActionError as error:
                st.error(str(error))
            else:
                st.success("Patient removed from database.")

    with transfer_tab:
        options = [(unit.id, consultant) for unit in WARD_CONFIG.units for consultant in unit.consultants]
        target = st.selectbox(
            "Transfer to",
            options,
            format_func=lambda option: f"{WARD_CONFIG.unit(option[0]).name}: {option[1]}",
            key=f"transfer_pick_{patient.hospital_no}",
        )
        if st.button("Transfer", key=f"transfer_{patient.hospital_no}"):
            transfer_patient(store, patient, target[1], target[0], CLOCK.now())
            st.success(f"Transferred {patient.name} to {target[1]}.")

    with discharge_tab:
        defaults = discharge_form_defaults(patient, today)
        with st.form(f"discharge_{patient.hospital_no}"):
            form = dict(defaults)
            form["procedure_name"] = st.text_input("Procedure", value=defaults["procedure_name"])
            form["final_diagnosis"] = st.text_input("Final diagnosis", value=defaults["final_diagnosis"])
            form["management"] = st.text_area("Management", value=defaults["management"])
            form["follow_up"] = st.text_input("Follow up", value="")
            confirmed = st.form_submit_button("Confirm discharge")
        if confirmed:
            discharge_patient(store, patient, form, unit_id, CLOCK.now())
            st.success("Patient discharged.")

    if census_state.stale:
        st.caption("Showing last good census; edits are saved but the census may be out of date.")


def _render_discharges(store: WardDocumentStore) -> None:
    records = list_discharges(store)
    if not records:
        st.caption("No discharges recorded.")
        return
    for record in records:
        name = record.patient.get("name", "") or record.hospital_no
        cols = st.columns([4, 2, 1])
        cols[0].write(f"**{name}** ({record.hospital_no})")
        cols[1].write(format_display_date(record.timestamp[:10], fallback=record.timestamp))
        if cols[2].button("Revert", key=f"revert_{record.doc_id}"):
            try:
                revert_discharge(store, record.doc_id)
            except PatientActionError as error:
                st.error(str(error))
            else:
                st.success(f"Discharge reverted for {name}.")


_enforce_allowed_users()

try:
    WARD_CONFIG = load_ward_config(str(SETTINGS.config_path))
except ConfigError as error:
    st.error(f"Ward configuration error: {error}")
    st.stop()

store = _session_store()
census_state = _session_census(store)

st.sidebar.title(APP_TITLE)
unit = st.sidebar.selectbox("Unit", WARD_CONFIG.units, format_func=lambda item: item.name)
if st.sidebar.button("Reload census", use_container_width=True):
    with st.spinner("Reading census sheets..."):
        _reload_census(census_state)
if census_state.stale:
    st.sidebar.warning(f"Data may be stale. {census_state.last_error}")

today = CLOCK.today()
patients = census_state.patients
zone_rules = WARD_CONFIG.zone_rules_for_unit(unit.id)

st.title(unit.name)
st.caption(f"{unit_census_count(patients, unit)} patients admitted")

zones_tab, consultants_tab, all_tab, elective_tab, discharges_tab, archive_tab, bed_map_tab = st.tabs(
    ["Bed zones", "Consultants", "All admissions", "Electives", "Discharges", "Archive", "Bed map"]
)

with zones_tab:
    view = project(patients, ViewSpec(ViewKind.BED_ZONES, unit=unit, zone_rules=zone_rules))
    for group in view.groups:
        st.subheader(f"{group.label} ({len(group.patients)})")
        _render_patients(group.patients)
    ghosts = [patient for patient in project(patients, ViewSpec(ViewKind.UNIT, unit=unit)).patients if patient.is_ghost]
    if ghosts:
        st.subheader(f"Left census ({len(ghosts)})")
        _render_patients(ghosts)
    st.divider()
    _render_patient_editor(census_state, store, project(patients, ViewSpec(ViewKind.UNIT, unit=unit)).patients, unit.id)

with consultants_tab:
    sort = st.radio("Sort within consultant", ["bed", "admission_date", "name"], horizontal=True)
    view = project(patients, ViewSpec(ViewKind.CONSULTANTS, unit=unit, sort=sort))
    for group in view.groups:
        with st.expander(f"{group.label} ({len(group.patients)})", expanded=True):
            _render_patients(group.patients)
            _render_bulk_text(group.label, group.patients, today)

with all_tab:
    as_calendar = st.toggle("Group by admission date", value=False)
    if as_calendar:
        for group in project(patients, ViewSpec(ViewKind.CALENDAR)).groups:
            st.subheader(f"{format_display_date(group.label)} ({len(group.patients)})")
            _render_patients(group.patients)
    else:
        _render_patients(project(patients, ViewSpec(ViewKind.ADMISSION_DATE)).patients)

with elective_tab:
    descending = st.toggle("Consultant Z-A", value=False)
    kind_sort = "consultant_desc" if descending else None
    view = project(patients, ViewSpec(ViewKind.ELECTIVE_BY_DATE, today=today, sort=kind_sort))
    if not view.groups:
        st.caption("No elective cases in the window.")
    for group in view.groups:
        st.subheader(f"{format_display_date(group.label)} ({len(group.patients)})")
        _render_patients(group.patients)

with discharges_tab:
    _render_discharges(store)

with archive_tab:
    if "archive_index" not in st.session_state:
        st.session_state.archive_index = ArchiveIndex(SETTINGS.archive_path)
    query = st.text_input("Search by name or hospital number")
    results = st.session_state.archive_index.search(query)
    if results:
        st.dataframe(pd.DataFrame(results), use_container_width=True, hide_index=True)
    else:
        st.caption("No archive records.")

with bed_map_tab:
    _render_bed_map(unit.id)
