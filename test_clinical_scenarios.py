import unittest
import random
from core_physics import PhysiologyEngine
from models import ChecklistStatus, ClinicalCondition
from constants import CLAMP_LIMITS
from protocols import detect_protocol, evaluate_protocol, evaluation_to_prompt_block
from case_generator import generate_case


class TestClinicalScenarios(unittest.TestCase):
    """
    End-to-end patient cases across engine, evaluator and case generator.
    Run with: python -m unittest test_clinical_scenarios.py
    """

    def test_01_unstable_patient_drifts(self):
        """[PHYSICS] 10 minutes of instability with no treatment."""
        print("\nSCENARIO A: Unstable Drift")
        engine = PhysiologyEngine()
        engine.tick(10, "unstable")
        v = engine.get_vitals()
        print(f"   HR {v.heart_rate} | SBP {v.systolic_bp} | SpO2 {v.sp_o2_percent}")
        self.assertEqual(v.heart_rate, 100)
        self.assertEqual(v.systolic_bp, 100)
        self.assertEqual(v.sp_o2_percent, 92)
        self.assertEqual(engine.get_game_time_minutes(), 10)

    def test_02_epinephrine_bolus(self):
        """[PHARMACOLOGY] Epinephrine raises HR/BP immediately, costs no clock until ticked."""
        print("\nSCENARIO B: Epinephrine")
        engine = PhysiologyEngine()
        engine.apply_intervention("Administrar Epinefrina 1mg")
        v = engine.get_vitals()
        self.assertEqual((v.heart_rate, v.systolic_bp, v.diastolic_bp), (100, 135, 90))
        self.assertEqual(engine.get_game_time_minutes(), 0)
        self.assertIn("epinefrina", engine.get_applied_interventions())

    def test_03_untreated_sepsis_then_antibiotic(self):
        """[DISEASE] Sepsis penalizes every 15 min until an antibiotic is given."""
        print("\nSCENARIO C: Sepsis")
        engine = PhysiologyEngine()
        engine.set_conditions_from_narrative("Choque séptico de foco pulmonar")
        self.assertEqual(engine.get_active_conditions(), [ClinicalCondition.SEPSE])

        engine.tick(60, "stable")  # Stable: only the sepsis penalty moves vitals
        v = engine.get_vitals()
        print(f"   After 60min untreated: {v}")
        self.assertEqual(v.heart_rate, 80 + 4 * 3)
        self.assertEqual(v.systolic_bp, 120 - 4 * 4)
        self.assertEqual(v.diastolic_bp, 80 - 4 * 2)
        self.assertEqual(v.temp_celsius, 37.3)

        engine.apply_intervention("ceftriaxona 1g")
        engine.tick(60, "stable")
        self.assertEqual(engine.get_vitals(), v)

    def test_04_stemi_without_reperfusion(self):
        """[PROTOCOL] ECG on time, no reperfusion: partial adherence."""
        print("\nSCENARIO D: STEMI Adherence")
        narrative = "Paciente com infarto agudo do miocárdio com supra de ST em parede inferior"
        protocol = detect_protocol(narrative)
        self.assertIsNotNone(protocol)
        self.assertEqual(protocol.name, "IAM com Supra de ST (STEMI)")

        engine = PhysiologyEngine()
        engine.apply_intervention("ECG de 12 derivações")
        engine.tick(5, "stable")
        engine.log_action("ECG de 12 derivações")

        evaluation = evaluate_protocol(
            protocol, engine.get_action_timeline(), engine.get_applied_interventions()
        )
        print(evaluation_to_prompt_block(evaluation))
        by_id = {r.item_id: r for r in evaluation.results}
        self.assertEqual(by_id["iam_ecg"].status, ChecklistStatus.DONE)
        self.assertEqual(by_id["iam_ecg"].performed_at, 5)
        self.assertEqual(by_id["iam_reperfusao"].status, ChecklistStatus.MISSED)
        self.assertLess(evaluation.adherence_score, 10.0)
        self.assertAlmostEqual(evaluation.adherence_score, 1.5)

    def test_05_cardiology_case_generation(self):
        """[GENERATOR] Cardiology always yields a STEMI case with valid vitals."""
        print("\nSCENARIO E: Cardiology Cases")
        for seed in range(50):
            case = generate_case("Cardiologia", random.Random(seed))
            self.assertIsNotNone(case)
            self.assertEqual(case.specialty, "Cardiologia")
            self.assertEqual(case.template_id, "iam_stemi")
            vitals = case.initial_vitals.to_dict()
            for name, (low, high) in CLAMP_LIMITS.RANGES.items():
                self.assertTrue(low <= vitals[name] <= high, f"{name}={vitals[name]} (seed {seed})")

    def test_06_cardiac_arrest_full_response(self):
        """[PROTOCOL] Fast ACLS response scores full marks."""
        print("\nSCENARIO F: Cardiac Arrest")
        engine = PhysiologyEngine()
        engine.set_conditions_from_narrative("Paciente evolui com PCR em fibrilação ventricular")
        protocol = detect_protocol("Paciente evolui com PCR em fibrilação ventricular")
        self.assertEqual(protocol.name, "PCR / Parada Cardiorrespiratória")

        for action in ("Iniciar RCP", "Desfibrilação 200J", "Epinefrina 1mg",
                       "Acesso venoso periférico", "Intubação orotraqueal", "Amiodarona 300mg"):
            engine.apply_intervention(action)
            engine.log_action(action)
        # All logged at minute 0: everything within target
        evaluation = evaluate_protocol(
            protocol, engine.get_action_timeline(), engine.get_applied_interventions()
        )
        self.assertEqual(evaluation.adherence_score, 10.0)
        self.assertTrue(all(r.status == ChecklistStatus.DONE for r in evaluation.results))


if __name__ == '__main__':
    unittest.main()
