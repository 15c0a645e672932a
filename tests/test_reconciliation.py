"""
Tests for wardround.services.reconciliation.
"""

import pytest

from wardround.models.extraction import (
    Appointment,
    EchoReport,
    ExtractionKind,
    HandoffUpdate,
    PatientScan,
    VitalsSummary,
)
from wardround.models.patient import Patient
from wardround.models.records import (
    Acuity,
    AdmissionNote,
    ChronicDisease,
    CultureResult,
    LabResultRecord,
    Medication,
    ProblemEntry,
    ScannedDemographics,
    Task,
)
from wardround.services.reconciliation import (
    RecordNotFound,
    ReconciliationError,
    content_id,
    find_allergy_conflicts,
    grid_fill,
    reconcile,
    series_key,
    set_medication_active,
)
from wardround.services.sanitizer import sanitize
from wardround.services.schema_coercer import coerce_records


def lab(name, value, when, unit=""):
    return LabResultRecord(test_name=name, value=value, unit=unit, date_time=when)


@pytest.fixture
def patient():
    return Patient(id="p1", name="Somchai", room="12", allergies="Penicillin; NKDA")


class TestSeriesKey:

    @pytest.mark.parametrize("name, expected", [
        ("Creatinine", "creatinine"),
        ("Cr", "creatinine"),
        ("WBC", "wbc"),
        ("Hb", "hgb"),
        ("Hemoglobin", "hgb"),
        ("K", "k"),
        ("Potassium", "k"),
        ("PT-INR", "inr"),
        ("Na", "sodium"),
        ("Sodium", "sodium"),
        ("Hct", None),
        ("Albumin", None),
        ("", None),
    ])
    def test_routing(self, name, expected):
        assert series_key(name) == expected


class TestGridFill:

    def test_missing_cell_becomes_placeholder(self):
        filled = grid_fill([
            lab("WBC", 8.1, "2024-06-14 00:00", "10^3/uL"),
            lab("Hgb", 11.2, "2024-06-14 00:00", "g/dL"),
            lab("WBC", 9.0, "2024-06-15 00:00", "10^3/uL"),
        ])
        cells = {(r.test_name, r.date_time): r for r in filled}
        assert len(filled) == 4
        placeholder = cells[("Hgb", "2024-06-15 00:00")]
        assert placeholder.value is None
        assert placeholder.unit == "g/dL"

    def test_undated_records_follow_grid(self):
        filled = grid_fill([lab("K", 3.5, None), lab("Na", 140, "2024-06-14 00:00")])
        assert [r.test_name for r in filled] == ["Na", "K"]


class TestReconcileLabs:

    def test_batches_append_in_insertion_order(self, patient):
        batch_a = [lab("Cr", 1.4, "2024-06-14 09:00"), lab("Cr", 1.3, "2024-06-13 09:00")]
        batch_b = [lab("Creatinine", 1.2, "2024-06-01 09:00")]

        first = reconcile(patient, ExtractionKind.LAB, batch_a).patient
        second = reconcile(first, ExtractionKind.LAB, batch_b).patient

        series = second.labs.creatinine
        assert len(series) == len(batch_a) + len(batch_b)
        assert [p.value for p in series] == [1.4, 1.3, 1.2]
        assert [p.date for p in second.labs.ordered("creatinine")] == [
            "2024-06-01 09:00", "2024-06-13 09:00", "2024-06-14 09:00",
        ]

    def test_exact_duplicates_are_skipped(self, patient):
        batch = [lab("K", 3.1, "2024-06-14 06:00")]
        once = reconcile(patient, ExtractionKind.LAB, batch).patient
        result = reconcile(once, ExtractionKind.LAB, batch)
        assert result.skipped == 1
        assert len(result.patient.labs.k) == 1

    def test_duplicates_kept_without_dedupe(self, patient):
        batch = [lab("K", 3.1, "2024-06-14 06:00")]
        once = reconcile(patient, ExtractionKind.LAB, batch).patient
        twice = reconcile(once, ExtractionKind.LAB, batch, dedupe=False).patient
        assert len(twice.labs.k) == 2

    def test_unknown_tests_go_to_other_series(self, patient):
        result = reconcile(patient, ExtractionKind.LAB, [
            lab("Albumin", 3.0, "2024-06-14 00:00", "g/dL"),
            lab("albumin", 2.8, "2024-06-15 00:00", "g/dL"),
        ])
        others = result.patient.labs.others
        assert len(others) == 1
        assert others[0].name == "Albumin"
        assert [p.value for p in others[0].values] == [3.0, 2.8]

    def test_unreadable_date_uses_fallback(self, patient):
        result = reconcile(
            patient, ExtractionKind.LAB, [lab("Na", 135, None)], fallback_date="2024-01-02 03:04"
        )
        assert result.patient.labs.sodium[0].date == "2024-01-02 03:04"

    def test_grid_fill_stores_placeholders(self, patient):
        result = reconcile(patient, ExtractionKind.LAB, [
            lab("WBC", 8.1, "2024-06-14 00:00"),
            lab("Hgb", 11.2, "2024-06-14 00:00"),
            lab("WBC", 9.0, "2024-06-15 00:00"),
        ], fill_grid=True)
        hgb = result.patient.labs.hgb
        assert [(p.date, p.value) for p in hgb] == [
            ("2024-06-14 00:00", 11.2),
            ("2024-06-15 00:00", None),
        ]

    def test_placeholders_without_fill_grid_are_skipped(self, patient):
        result = reconcile(patient, ExtractionKind.LAB, [
            lab("WBC", 8.1, "2024-06-14 00:00"),
            lab("WBC", None, "2024-06-15 00:00"),
        ])
        assert (result.added, result.skipped) == (1, 1)
        assert [p.value for p in result.patient.labs.wbc] == [8.1]

    def test_input_patient_is_not_mutated(self, patient):
        reconcile(patient, ExtractionKind.LAB, [lab("Cr", 1.0, "2024-06-14 00:00")])
        assert patient.labs.creatinine == []

    def test_end_to_end_from_raw_text(self):
        raw = ('Here is the data:\n```json\n[{"testName":"Creatinine","value":1.4,'
               '"unit":"mg/dL","dateTime":"14/06/2567 09:00"}]\n```')
        records = coerce_records(ExtractionKind.LAB, sanitize(raw))
        result = reconcile(Patient(name="Empty"), ExtractionKind.LAB, records)

        series = result.patient.labs.creatinine
        assert len(series) == 1
        assert series[0].date == "2024-06-14 09:00"
        assert series[0].value == 1.4


class TestReconcileIdentified:

    def test_new_records_get_stable_ids(self, patient):
        batch = [Medication(name="Ceftriaxone", dose="2 g", route="IV")]
        first = reconcile(patient, ExtractionKind.MEDICATION, batch)
        assert first.added == 1
        med_id = first.patient.medications[0].id
        assert med_id == content_id(ExtractionKind.MEDICATION, batch[0])

        again = reconcile(first.patient, ExtractionKind.MEDICATION, batch)
        assert again.added == 0
        assert again.skipped == 1
        assert len(again.patient.medications) == 1

    def test_record_with_id_replaces_item(self, patient):
        patient.tasks = [Task(id="t1", description="Repeat K")]
        result = reconcile(patient, ExtractionKind.TASK, [Task(id="t1", description="Repeat K at 16:00")])
        assert result.updated == 1
        assert [t.description for t in result.patient.tasks] == ["Repeat K at 16:00"]

    def test_unknown_id_is_reported_not_inserted(self, patient):
        result = reconcile(patient, ExtractionKind.TASK, [Task(id="missing", description="x")])
        assert result.unmatched_ids == ["missing"]
        assert result.patient.tasks == []

    def test_archived_item_is_locked(self, patient):
        patient.cultures = [CultureResult(id="c1", specimen="Blood", archived=True)]
        result = reconcile(patient, ExtractionKind.CULTURE, [
            CultureResult(id="c1", specimen="Blood", organism="E. coli"),
        ])
        assert result.locked_ids == ["c1"]
        assert result.patient.cultures[0].organism == ""

    def test_echo_becomes_imaging_study(self, patient):
        result = reconcile(patient, ExtractionKind.ECHO, EchoReport(date="2024-06-14 00:00", lvef="35%"))
        study = result.patient.imaging[0]
        assert study.modality == "Echo"
        assert "LVEF: 35%" in study.findings

    def test_appointment_becomes_timeline_event(self, patient):
        result = reconcile(patient, ExtractionKind.APPOINTMENT, [
            Appointment(title="Cardio clinic", date="2024-07-01 00:00", time="09:30", type="Clinic"),
        ])
        event = result.patient.timeline[0]
        assert event.date == "2024-07-01 09:30"
        assert event.type == "Other"
        assert event.status == "Scheduled"

    def test_problems_push_a_history_snapshot(self, patient):
        patient.problem_list = [ProblemEntry(id="a", problem="CAP")]
        result = reconcile(patient, ExtractionKind.PROBLEM, [ProblemEntry(problem="AKI")])
        updated = result.patient
        assert [p.problem for p in updated.problem_list] == ["CAP", "AKI"]
        assert len(updated.problem_history) == 2
        assert updated.problem_history_index == 1


class TestReconcileObjects:

    def test_handoff_merges_non_empty_fields(self, patient):
        patient.handoff.patient_summary = "Old summary"
        patient.handoff.contingencies = "Call if SBP < 90"
        update = HandoffUpdate(
            room_number="12",
            update={"patientSummary": "New summary", "contingencies": ""},
            acuity="Watch",
        )
        updated = reconcile(patient, ExtractionKind.HANDOFF, [update]).patient
        assert updated.handoff.patient_summary == "New summary"
        assert updated.handoff.contingencies == "Call if SBP < 90"
        assert updated.acuity == Acuity.WATCH

    def test_admission_note_fills_missing_demographics(self, patient):
        note = AdmissionNote(
            chief_complaint="Fever",
            patient_demographics=ScannedDemographics(hn="HN123", age=67, gender="M"),
            problem_list=[ProblemEntry(problem="Sepsis")],
        )
        updated = reconcile(patient, ExtractionKind.ADMISSION_NOTE, note).patient
        assert updated.admission_note.chief_complaint == "Fever"
        assert (updated.hn, updated.age, updated.gender) == ("HN123", 67, "M")
        assert [p.problem for p in updated.problem_list] == ["Sepsis"]

    def test_patient_scan_fills_only_blank_fields(self, patient):
        patient.gender = "F"
        scan = PatientScan(name="นาย สมชาย", hn="HN9", age=67, gender="M", diagnosis="CAP", one_liner="67M with CAP")
        result = reconcile(patient, ExtractionKind.PATIENT_DEMOGRAPHICS, scan)

        updated = result.patient
        assert result.updated == 1
        assert (updated.name, updated.hn, updated.age, updated.gender) == ("Somchai", "HN9", 67, "F")
        assert (updated.diagnosis, updated.one_liner) == ("CAP", "67M with CAP")

        again = reconcile(updated, ExtractionKind.PATIENT_DEMOGRAPHICS, scan)
        assert (again.updated, again.skipped) == (0, 1)

    def test_chronic_diseases_merge_by_type(self, patient):
        first = reconcile(patient, ExtractionKind.CHRONIC_DISEASE, [
            ChronicDisease(type="DM type 2", last_values={"HbA1c": "7.2"}),
            ChronicDisease(type="HT"),
        ])
        assert first.added == 2
        assert first.patient.admission_note is not None

        second = reconcile(first.patient, ExtractionKind.CHRONIC_DISEASE, [
            ChronicDisease(type="dm type 2", last_values={"HbA1c": "6.9"}),
            ChronicDisease(type="HT"),
        ])
        assert (second.added, second.updated, second.skipped) == (0, 1, 1)
        diseases = second.patient.admission_note.chronic_diseases
        assert [(d.type, d.last_values) for d in diseases] == [("dm type 2", {"HbA1c": "6.9"}), ("HT", {})]

    def test_vitals_are_not_stored(self, patient):
        with pytest.raises(ReconciliationError):
            reconcile(patient, ExtractionKind.VITALS, VitalsSummary(tmax="38"))

    def test_wrong_record_type_raises(self, patient):
        with pytest.raises(ReconciliationError):
            reconcile(patient, ExtractionKind.LAB, [{"testName": "K", "value": 3}])

    def test_pre_round_summary_is_not_stored(self, patient):
        from wardround.models.extraction import PreRoundSummary

        with pytest.raises(ReconciliationError):
            reconcile(patient, ExtractionKind.PRE_ROUND_SUMMARY, PreRoundSummary(subjective="ok"))


class TestMedications:

    def test_stop_keeps_medication_with_end_date(self, patient):
        patient.medications = [Medication(id="m1", name="Amoxicillin")]
        stopped = set_medication_active(patient, "m1", False)
        assert stopped.medications[0].is_active is False
        assert stopped.medications[0].end_date
        assert patient.medications[0].is_active is True

        restarted = set_medication_active(stopped, "m1", True)
        assert restarted.medications[0].end_date is None

    def test_unknown_medication_raises(self, patient):
        with pytest.raises(RecordNotFound):
            set_medication_active(patient, "nope", False)

    def test_allergy_conflicts(self, patient):
        medications = [
            Medication(id="m1", name="Amoxicillin 500 mg"),
            Medication(id="m2", name="Ceftriaxone"),
            Medication(id="m3", name="Paracetamol"),
            Medication(id="m4", name="Ampicillin", is_active=False),
        ]
        conflicts = find_allergy_conflicts(medications, patient.allergy_list())
        by_med = {c.medication_id: c for c in conflicts}
        assert set(by_med) == {"m1", "m2"}
        assert "Same drug class" in by_med["m1"].reason
        assert "Cross-reactivity" in by_med["m2"].reason
