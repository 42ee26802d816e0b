from __future__ import annotations

import copy
import unittest

from ward_census.merger import (
    GHOST_AGE_GENDER,
    GHOST_IP_DATE,
    GHOST_NAME,
    FieldOwnership,
    merge_patients,
)
from ward_census.records import (
    ADMITTED,
    ELECTIVE,
    MARKED_FOR_DISCHARGE,
    CensusRecord,
    EditRecord,
    Surgery,
    TransferRecord,
    edits_by_identity,
    latest_transfers,
)


def _census(hospital_no: str, **fields: str) -> CensusRecord:
    base = {
        "name": f"Patient {hospital_no}",
        "bed_no": "501",
        "consultant": "Dr. Nagmani Singh",
        "ip_date": "2024-06-01",
        "age_gender": "30/M",
    }
    base.update(fields)
    return CensusRecord(hospital_no=hospital_no, **base)


class MergePatientsTests(unittest.TestCase):
    def test_empty_sources_give_empty_result(self) -> None:
        self.assertEqual(merge_patients([], {}, {}), [])

    def test_census_owned_fields_win_over_edits(self) -> None:
        census = [_census("H1", bed_no="522", name="Ram Bahadur")]
        edits = {"H1": EditRecord("H1", {"bed_no": "999", "name": "Typo", "plan": "Discharge tomorrow"})}

        merged = merge_patients(census, edits, {})

        self.assertEqual(len(merged), 1)
        self.assertEqual(merged[0].bed_no, "522")
        self.assertEqual(merged[0].name, "Ram Bahadur")
        self.assertEqual(merged[0].plan, "Discharge tomorrow")
        self.assertFalse(merged[0].is_ghost)

    def test_edits_only_fill_blank_census_fields(self) -> None:
        census = [_census("H1", diagnosis="ACL tear", procedure="")]
        edits = {"H1": EditRecord("H1", {"diagnosis": "Old diagnosis", "procedure": "ACLR", "dop": "2024-06-02"})}

        patient = merge_patients(census, edits, {})[0]

        self.assertEqual(patient.diagnosis, "ACL tear")
        self.assertEqual(patient.procedure, "ACLR")
        self.assertEqual(patient.dop, "2024-06-02")

    def test_edit_ownership_can_override_census_values(self) -> None:
        census = [_census("H1", diagnosis="ACL tear")]
        edits = {"H1": EditRecord("H1", {"diagnosis": "ACL + meniscus tear"})}
        policy = {"diagnosis": FieldOwnership.EDIT, "bed_no": FieldOwnership.CENSUS}

        patient = merge_patients(census, edits, {}, policy)[0]

        self.assertEqual(patient.diagnosis, "ACL + meniscus tear")

    def test_blank_and_error_values_are_ignored(self) -> None:
        census = [_census("H1", diagnosis="")]
        edits = {"H1": EditRecord("H1", {"diagnosis": "#REF!", "plan": "   "})}

        patient = merge_patients(census, edits, {})[0]

        self.assertEqual(patient.diagnosis, "")
        self.assertEqual(patient.plan, "")

    def test_status_is_forced_while_in_census(self) -> None:
        census = [_census("H1"), _census("H2", status=ELECTIVE)]
        edits = {
            "H1": EditRecord("H1", {"status": MARKED_FOR_DISCHARGE}),
            "H2": EditRecord("H2", {"status": ADMITTED}),
        }

        merged = {patient.id: patient for patient in merge_patients(census, edits, {})}

        self.assertEqual(merged["H1"].status, ADMITTED)
        self.assertEqual(merged["H2"].status, ELECTIVE)

    def test_latest_transfer_overrides_consultant(self) -> None:
        census = [_census("H1", consultant="Dr. Nagmani Singh")]
        transfers = {"H1": TransferRecord("t1", "H1", "Dr. Saroj Rijal", 3, "2024-06-02T10:00:00Z")}
        edits = {"H1": EditRecord("H1", {"consultant": "Dr. Rohit Bista"})}

        patient = merge_patients(census, edits, transfers)[0]

        self.assertEqual(patient.consultant, "Dr. Saroj Rijal")

    def test_ghost_from_edit_only(self) -> None:
        merged = merge_patients([], {"H1": EditRecord("H1", {"diagnosis": "Fracture"})}, {})

        self.assertEqual(len(merged), 1)
        ghost = merged[0]
        self.assertEqual(ghost.id, "H1")
        self.assertTrue(ghost.is_ghost)
        self.assertEqual(ghost.bed_no, "")
        self.assertEqual(ghost.name, GHOST_NAME)
        self.assertEqual(ghost.age_gender, GHOST_AGE_GENDER)
        self.assertEqual(ghost.ip_date, GHOST_IP_DATE)
        self.assertEqual(ghost.diagnosis, "Fracture")

    def test_ghost_keeps_saved_details_and_transfer_consultant(self) -> None:
        edits = {"H9": EditRecord("H9", {"name": "Sita Devi", "bed_no": "501", "status": MARKED_FOR_DISCHARGE})}
        transfers = {"H9": TransferRecord("t1", "H9", "Dr. Om Prasad Shrestha", 6)}

        ghost = merge_patients([_census("H1")], edits, transfers)[-1]

        self.assertTrue(ghost.is_ghost)
        self.assertEqual(ghost.name, "Sita Devi")
        self.assertEqual(ghost.bed_no, "")
        self.assertEqual(ghost.consultant, "Dr. Om Prasad Shrestha")
        self.assertEqual(ghost.status, MARKED_FOR_DISCHARGE)

    def test_ghosts_follow_census_patients_in_identity_order(self) -> None:
        edits = {"H3": EditRecord("H3"), "H2": EditRecord("H2")}
        transfers = {"H4": TransferRecord("t1", "H4", "Dr. Ishor Pradhan")}

        merged = merge_patients([_census("H1")], edits, transfers)

        self.assertEqual([patient.id for patient in merged], ["H1", "H2", "H3", "H4"])
        self.assertEqual([patient.is_ghost for patient in merged], [False, True, True, True])

    def test_duplicate_census_rows_collapse(self) -> None:
        census = [_census("H1", diagnosis=""), _census("H1", bed_no="999", diagnosis="Tibia fracture")]

        merged = merge_patients(census, {}, {})

        self.assertEqual(len(merged), 1)
        self.assertEqual(merged[0].bed_no, "501")
        self.assertEqual(merged[0].diagnosis, "Tibia fracture")

    def test_census_row_without_identity_is_skipped_and_logged(self) -> None:
        census = [CensusRecord("  ", bed_no="503"), _census("H1")]

        with self.assertLogs("ward_census.merger", level="WARNING") as logs:
            merged = merge_patients(census, {}, {})

        self.assertEqual([patient.id for patient in merged], ["H1"])
        self.assertTrue(any("without hospital number" in line for line in logs.output))

    def test_merge_is_pure_and_idempotent(self) -> None:
        census = [_census("H1", diagnosis="")]
        edits = {"H1": EditRecord("H1", {"diagnosis": "Sprain", "surgeries": [Surgery("Arthroscopy", "2024-06-03")]})}
        transfers = {"H5": TransferRecord("t1", "H5", "Dr. Saroj Rijal")}
        census_before = copy.deepcopy(census)
        edits_before = copy.deepcopy(edits)

        first = merge_patients(census, edits, transfers)
        second = merge_patients(census, edits, transfers)

        self.assertEqual(first, second)
        self.assertEqual(census, census_before)
        self.assertEqual(edits, edits_before)
        first[0].surgeries.append(Surgery("Extra"))
        self.assertEqual(len(edits["H1"].fields["surgeries"]), 1)


class SourceDocumentTests(unittest.TestCase):
    def test_edit_documents_use_canonical_keys(self) -> None:
        edits = edits_by_identity(
            [
                ("H1", {"bedNo": "501", "lastUpdated": "2024-06-01T00:00:00Z", "status": "Discharged"}),
                ("", {"name": "No identity"}),
                ("H2", {"status": "archived", "plan": "  Review  "}),
            ]
        )

        self.assertEqual(sorted(edits), ["H1", "H2"])
        self.assertEqual(edits["H1"].fields["bed_no"], "501")
        self.assertEqual(edits["H1"].fields["status"], "discharged")
        self.assertNotIn("status", edits["H2"].fields)
        self.assertEqual(edits["H2"].fields["plan"], "Review")

    def test_latest_transfer_by_timestamp(self) -> None:
        transfers = latest_transfers(
            [
                ("t2", {"hospitalNo": "H1", "newConsultant": "Dr. B", "timestamp": "2024-06-03T09:00:00+05:45"}),
                ("t1", {"hospitalNo": "H1", "newConsultant": "Dr. A", "timestamp": "2024-06-01T09:00:00Z"}),
                ("t3", {"newConsultant": "Dr. C"}),
            ]
        )

        self.assertEqual(list(transfers), ["H1"])
        self.assertEqual(transfers["H1"].new_consultant, "Dr. B")
        self.assertEqual(transfers["H1"].doc_id, "t2")


if __name__ == "__main__":
    unittest.main()
