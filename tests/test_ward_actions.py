from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from ward_census.census_state import CensusState
from ward_census.formatter import format_patient
from ward_census.document_store import WardDocumentStore
from ward_census.records import (
    ADMITTED,
    DISCHARGED,
    DISCHARGES,
    PATIENT_DATA,
    TRANSFERS,
    CensusRecord,
    MergedPatient,
    Surgery,
    TrackingEntry,
)
from ward_census.ward_actions import (
    PatientActionError,
    discharge_patient,
    list_discharges,
    patient_document,
    remove_patient,
    revert_discharge,
    save_patient,
    surgeries_from_rows,
    tracking_from_rows,
    transfer_patient,
)

NOW = datetime(2024, 6, 5, 9, 30, tzinfo=timezone.utc)


def _patient(**fields: object) -> MergedPatient:
    base: dict[str, object] = {
        "name": "Asha",
        "bed_no": "501",
        "consultant": "Dr. Nagmani Singh",
        "ip_date": "2024-06-01",
    }
    base.update(fields)
    return MergedPatient(hospital_no="H1", **base)


class WardActionTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.store = WardDocumentStore(Path(self._tmpdir.name) / "ward.db")

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def test_patient_document_uses_camel_case_keys(self) -> None:
        payload = patient_document(_patient(surgeries=[Surgery("ORIF", "2024-06-02")]))

        self.assertEqual(payload["hospitalNo"], "H1")
        self.assertEqual(payload["bedNo"], "501")
        self.assertEqual(payload["surgeries"], [{"procedure": "ORIF", "dop": "2024-06-02"}])
        self.assertNotIn("is_ghost", payload)

    def test_save_drops_census_owned_fields(self) -> None:
        written = save_patient(
            self.store,
            _patient(),
            {"bedNo": "999", "name": "Typo", "plan": "Physio", "surgeries": [Surgery("ORIF", "2024-06-02")]},
            NOW,
        )

        self.assertEqual(set(written), {"plan", "surgeries", "lastUpdated"})
        stored = self.store.get(PATIENT_DATA, "H1")
        self.assertEqual(stored["plan"], "Physio")
        self.assertEqual(stored["surgeries"], [{"procedure": "ORIF", "dop": "2024-06-02"}])
        self.assertEqual(stored["lastUpdated"], NOW.isoformat())

    def test_editor_rows_become_surgeries_and_tracking(self) -> None:
        surgeries = surgeries_from_rows(
            [{"procedure": " Revision ORIF ", "dop": "2024-06-03"}, {"procedure": "", "dop": "2024-06-04"}]
        )
        tracking = tracking_from_rows(
            [
                {"id": "a1", "date": "2024-06-03", "parameter": "Hb", "value": "9.8"},
                {"id": "", "date": "2024-06-04", "parameter": "Drain", "value": "40 ml"},
                {"id": "", "date": "", "parameter": "", "value": ""},
            ]
        )

        self.assertEqual(surgeries, [Surgery("Revision ORIF", "2024-06-03")])
        self.assertEqual(len(tracking), 2)
        self.assertEqual(tracking[0], TrackingEntry("a1", "2024-06-03", "Hb", "9.8"))
        self.assertTrue(tracking[1].id)
        self.assertEqual(tracking[1].parameter, "Drain")

    def test_saved_clinical_fields_reach_the_merged_patient(self) -> None:
        state = CensusState()
        self.store.subscribe(PATIENT_DATA, state.apply_edits)
        state.apply_census([CensusRecord("H1", name="Asha", bed_no="501", consultant="Dr. Nagmani Singh")], 1)

        save_patient(
            self.store,
            state.patients[0],
            {
                "diagnosis": "Infected implant",
                "procedure": "Implant removal",
                "dop": "2024-06-01",
                "surgeries": surgeries_from_rows([{"procedure": "Revision ORIF", "dop": "2024-06-03"}]),
                "tracking": tracking_from_rows([{"id": "t1", "date": "2024-06-04", "parameter": "CRP", "value": "12"}]),
                "examination": "Wound clean",
                "investigation": "X-ray satisfactory",
                "address": "Lalitpur",
                "npo_status": "NPO after midnight",
                "program_year": "2",
                "program_block": "B",
            },
            NOW,
        )

        patient = state.patients[0]
        self.assertEqual(patient.surgeries, [Surgery("Revision ORIF", "2024-06-03")])
        self.assertEqual(patient.tracking, [TrackingEntry("t1", "2024-06-04", "CRP", "12")])
        self.assertEqual(
            (patient.examination, patient.investigation, patient.address, patient.npo_status),
            ("Wound clean", "X-ray satisfactory", "Lalitpur", "NPO after midnight"),
        )
        self.assertEqual((patient.program_year, patient.program_block), ("2", "B"))
        text = format_patient(patient, NOW.date())
        self.assertIn("*Diagnosis:* 4POD Implant removal for Infected implant", text)

    def test_save_on_ghost_keeps_identity_fields(self) -> None:
        save_patient(self.store, _patient(bed_no="", is_ghost=True), {"name": "Asha Rai"}, NOW)
        self.assertEqual(self.store.get(PATIENT_DATA, "H1")["name"], "Asha Rai")

    def test_save_requires_identity(self) -> None:
        with self.assertRaises(PatientActionError):
            save_patient(self.store, MergedPatient(hospital_no=" "), {"plan": "x"}, NOW)

    def test_transfer_records_log_and_snapshot(self) -> None:
        transfer_id = transfer_patient(self.store, _patient(), " Dr. Saroj Rijal ", 3, NOW)

        transfer = self.store.get(TRANSFERS, transfer_id)
        self.assertEqual(
            transfer,
            {"hospitalNo": "H1", "newConsultant": "Dr. Saroj Rijal", "unitId": 3, "timestamp": NOW.isoformat()},
        )
        self.assertEqual(self.store.get(PATIENT_DATA, "H1")["consultant"], "Dr. Saroj Rijal")

        with self.assertRaises(PatientActionError):
            transfer_patient(self.store, _patient(), "  ", 3, NOW)

    def test_remove_patient_deletes_edits_and_transfers(self) -> None:
        transfer_patient(self.store, _patient(), "Dr. Saroj Rijal", 3, NOW)
        transfer_patient(self.store, _patient(), "Dr. Ishor Pradhan", 3, NOW)

        self.assertEqual(remove_patient(self.store, "H1"), 3)
        self.assertEqual(self.store.snapshot(TRANSFERS), [])
        self.assertIsNone(self.store.get(PATIENT_DATA, "H1"))
        with self.assertRaises(PatientActionError):
            remove_patient(self.store, "H1")

    def test_discharge_and_revert(self) -> None:
        discharge_id = discharge_patient(self.store, _patient(), {"final_diagnosis": "Healed"}, 5, NOW)

        self.assertEqual(self.store.get(PATIENT_DATA, "H1")["status"], DISCHARGED)
        record = self.store.get(DISCHARGES, discharge_id)
        self.assertEqual(record["form"], {"final_diagnosis": "Healed"})
        self.assertEqual(record["patient"]["name"], "Asha")

        reverted = revert_discharge(self.store, discharge_id)

        self.assertEqual(reverted.hospital_no, "H1")
        self.assertEqual(self.store.get(PATIENT_DATA, "H1")["status"], ADMITTED)
        self.assertIsNone(self.store.get(DISCHARGES, discharge_id))
        with self.assertRaises(PatientActionError):
            revert_discharge(self.store, discharge_id)

    def test_list_discharges_newest_first(self) -> None:
        discharge_patient(self.store, _patient(), {}, 5, datetime(2024, 6, 1, tzinfo=timezone.utc))
        discharge_patient(self.store, MergedPatient(hospital_no="H2"), {}, 5, NOW)

        self.assertEqual([record.hospital_no for record in list_discharges(self.store)], ["H2", "H1"])

    def test_actions_flow_through_subscribed_census_state(self) -> None:
        state = CensusState()
        self.store.subscribe(PATIENT_DATA, state.apply_edits)
        self.store.subscribe(TRANSFERS, state.apply_transfers)
        state.apply_census([CensusRecord("H1", name="Asha", bed_no="501", consultant="Dr. Nagmani Singh")], 1)

        transfer_patient(self.store, state.patients[0], "Dr. Saroj Rijal", 3, NOW)
        discharge_patient(self.store, state.patients[0], {}, 3, NOW)

        patient = state.patients[0]
        self.assertEqual(patient.consultant, "Dr. Saroj Rijal")
        self.assertEqual(patient.status, ADMITTED)

        state.apply_census([], 2)

        ghost = state.patients[0]
        self.assertTrue(ghost.is_ghost)
        self.assertEqual(ghost.name, "Asha")
        self.assertEqual(ghost.status, DISCHARGED)


if __name__ == "__main__":
    unittest.main()
