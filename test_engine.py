import unittest
import random
from constants import CLAMP_LIMITS, INTERVENTION_LIBRARY
from core_physics import (
    PhysiologyEngine, clamp_vitals, match_intervention, match_interventions,
    time_cost_for, detect_conditions, format_game_time
)
from models import (
    Vitals, PatientStatus, Intervention, ClinicalCondition, normalize_text
)


class TestPhysiologyEngine(unittest.TestCase):

    def setUp(self):
        """Fresh engine with default vitals (80, 120/80, 97%, 16, 36.5)."""
        self.engine = PhysiologyEngine()

    def test_01_defaults_and_seed_clamp(self):
        print("\nTEST 1: Defaults & Seed Clamping")
        self.assertEqual(self.engine.get_vitals(), Vitals())
        self.assertEqual(self.engine.get_game_time_minutes(), 0)

        self.engine.reset({"heart_rate": 400, "sp_o2_percent": 100, "temp_celsius": 45, "bogus": 1})
        v = self.engine.get_vitals()
        print(f"   Seeded: {v}")
        self.assertEqual(v.heart_rate, 250)
        self.assertEqual(v.sp_o2_percent, 99)
        self.assertEqual(v.temp_celsius, 42.0)
        self.assertEqual(v.systolic_bp, 120)  # Not seeded -> default

    def test_02_clamp_rounding(self):
        print("\nTEST 2: Clamp Rounding (half-up, temp 1 decimal)")
        v = clamp_vitals(Vitals(heart_rate=80.5, systolic_bp=-3, diastolic_bp=300,
                                sp_o2_percent=92.4, respiratory_rate_bpm=16, temp_celsius=36.56))
        self.assertEqual(v.heart_rate, 81)
        self.assertIsInstance(v.heart_rate, int)
        self.assertEqual(v.systolic_bp, 0)
        self.assertEqual(v.diastolic_bp, 180)
        self.assertEqual(v.sp_o2_percent, 92)
        self.assertEqual(v.temp_celsius, 36.6)

    def test_03_unstable_drift(self):
        """10 minutes unstable: HR +20, SBP -20, SpO2 -5"""
        print("\nTEST 3: Unstable Drift (10 min)")
        self.engine.tick(10, "unstable")
        v = self.engine.get_vitals()
        print(f"   After 10min: {v}")
        self.assertEqual(v.heart_rate, 100)
        self.assertEqual(v.systolic_bp, 100)
        self.assertEqual(v.diastolic_bp, 70)
        self.assertEqual(v.sp_o2_percent, 92)
        self.assertEqual(v.respiratory_rate_bpm, 26)
        self.assertEqual(v.temp_celsius, 37.0)
        self.assertEqual(self.engine.get_game_time_minutes(), 10)

    def test_04_stable_and_unknown_labels_do_not_drift(self):
        print("\nTEST 4: Stable / Unknown Acuity")
        self.engine.tick(30, PatientStatus.ESTAVEL)
        self.engine.tick(30, "banana")
        self.assertEqual(self.engine.get_vitals(), Vitals())
        self.assertEqual(self.engine.get_game_time_minutes(), 60)

    def test_05_clock_never_decreases(self):
        print("\nTEST 5: Monotonic Clock")
        self.engine.tick(5, "stable")
        self.engine.tick(-10, "critical")
        self.assertEqual(self.engine.get_game_time_minutes(), 5)
        self.assertEqual(self.engine.get_vitals(), Vitals())

    def test_06_epinephrine_is_immediate(self):
        print("\nTEST 6: Epinephrine Bolus")
        matched = self.engine.apply_intervention("Administrar Epinefrina 1mg")
        v = self.engine.get_vitals()
        print(f"   After epinephrine: {v}")
        self.assertTrue(matched)
        self.assertEqual(v.heart_rate, 100)
        self.assertEqual(v.systolic_bp, 135)
        self.assertEqual(v.diastolic_bp, 90)
        self.assertEqual(self.engine.get_game_time_minutes(), 0)
        self.assertIn("epinefrina", self.engine.get_applied_interventions())

    def test_07_first_match_wins(self):
        """'noradrenalina' contains 'adrenalina', which is listed first."""
        print("\nTEST 7: Catalog Priority")
        self.assertEqual(match_intervention("Noradrenalina 0.1 mcg/kg/min"), Intervention.ADRENALINA)
        self.assertEqual(
            match_interventions("Noradrenalina 0.1 mcg/kg/min"),
            [Intervention.ADRENALINA, Intervention.NORADRENALINA],
        )

        self.engine.apply_intervention("Noradrenalina 0.1 mcg/kg/min")
        v = self.engine.get_vitals()
        self.assertEqual(v.heart_rate, 100)   # adrenalina effect, not noradrenalina
        self.assertEqual(v.systolic_bp, 135)
        applied = self.engine.get_applied_interventions()
        self.assertIn("adrenalina", applied)
        self.assertIn("noradrenalina", applied)  # From the critical-name scan

    def test_08_unmatched_action(self):
        print("\nTEST 8: Unmatched Action")
        self.assertFalse(self.engine.apply_intervention("Conversar com a família"))
        self.assertEqual(self.engine.get_vitals(), Vitals())
        self.assertEqual(self.engine.get_applied_interventions(), set())
        self.assertEqual(time_cost_for("Conversar com a família"), 5)

    def test_09_time_costs(self):
        print("\nTEST 9: Time Costs")
        self.assertEqual(time_cost_for("Solicitar ECG de 12 derivações"), 5)
        self.assertEqual(time_cost_for("Intubação orotraqueal"), 10)
        self.assertEqual(time_cost_for("Gasometria arterial"), 10)
        self.assertEqual(time_cost_for("Epinefrina 1mg"), 2)
        self.assertEqual(self.engine.time_cost_for("Tomografia de crânio"), 30)

    def test_10_sepsis_penalty_and_mitigation(self):
        """Sepsis (every 15 min): 60 min applies 4 penalties until an antibiotic is given."""
        print("\nTEST 10: Sepsis Penalty")
        seed = {"heart_rate": 60, "systolic_bp": 200, "diastolic_bp": 150, "temp_celsius": 36.0}
        septic = PhysiologyEngine(seed)
        control = PhysiologyEngine(seed)

        conditions = septic.set_conditions_from_narrative("Paciente com choque séptico de foco urinário")
        self.assertEqual(conditions, [ClinicalCondition.SEPSE])

        septic.tick(60, "unstable")
        control.tick(60, "unstable")
        s, c = septic.get_vitals(), control.get_vitals()
        print(f"   Septic: {s}\n   Control: {c}")
        self.assertEqual(s.heart_rate - c.heart_rate, 12)
        self.assertEqual(s.systolic_bp - c.systolic_bp, -16)
        self.assertEqual(s.diastolic_bp - c.diastolic_bp, -8)
        self.assertAlmostEqual(s.temp_celsius - c.temp_celsius, 0.8, places=5)

        septic.apply_intervention("ceftriaxona 1g")
        self.assertTrue(septic.is_mitigated(ClinicalCondition.SEPSE))

        # Same starting point, no condition: any difference would be a penalty
        control.reset(septic.get_vitals())
        septic.tick(60, "unstable")
        control.tick(60, "unstable")
        self.assertEqual(septic.get_vitals(), control.get_vitals())

    def test_11_penalty_intervals_floor_per_tick(self):
        print("\nTEST 11: Interval Flooring (no carry-over)")
        self.engine.set_conditions_from_narrative("Pneumotórax hipertensivo à direita")
        self.assertEqual(self.engine.get_active_conditions(), [ClinicalCondition.PNEUMOTORAX])

        self.engine.tick(4, "stable")
        self.engine.tick(4, "stable")
        self.assertEqual(self.engine.get_vitals(), Vitals())

        self.engine.tick(10, "stable")
        v = self.engine.get_vitals()
        self.assertEqual(v.sp_o2_percent, 91)
        self.assertEqual(v.respiratory_rate_bpm, 20)
        self.assertEqual(v.systolic_bp, 114)

    def test_12_conditions_are_replaced(self):
        print("\nTEST 12: Condition Rescan Replaces")
        self.engine.set_conditions_from_narrative("Quadro de sepse grave")
        self.assertEqual(self.engine.get_active_conditions(), [ClinicalCondition.SEPSE])
        self.engine.set_conditions_from_narrative("Paciente sem alterações")
        self.assertEqual(self.engine.get_active_conditions(), [])

    def test_13_mitigation_is_permanent(self):
        print("\nTEST 13: Permanent Mitigation")
        self.engine.set_conditions_from_narrative("Infarto agudo com supra de ST")
        self.assertIn(ClinicalCondition.IAM, self.engine.get_active_conditions())

        self.engine.apply_intervention("Cateterismo de urgência")
        before = self.engine.get_vitals()
        self.engine.set_conditions_from_narrative("Infarto agudo com supra de ST")
        self.engine.tick(30, "stable")
        self.assertEqual(self.engine.get_vitals(), before)
        self.assertIn("reperfusao", self.engine.get_applied_interventions())

    def test_14_timeline_and_debriefing(self):
        print("\nTEST 14: Timeline")
        self.engine.tick(65, "stable")
        first = self.engine.log_action("Administrar AAS 300mg")
        self.engine.log_action("Conversar com a família")
        self.assertTrue(first.is_critical)
        self.assertEqual(first.game_time_minutes, 65)

        timeline = self.engine.get_action_timeline()
        timeline.clear()  # Copy: must not affect the engine
        self.assertEqual(len(self.engine.get_action_timeline()), 2)

        text = self.engine.to_debriefing_timeline()
        print(text)
        lines = text.split("\n")
        self.assertEqual(lines[0], "[LINHA DO TEMPO DAS AÇÕES]")
        self.assertEqual(lines[1], "🚨 [01:05] Administrar AAS 300mg (CRÍTICA)")
        self.assertEqual(lines[2], "▫️ [01:05] Conversar com a família")

        self.assertIn("Nenhuma ação registrada.", PhysiologyEngine().to_debriefing_timeline())

    def test_15_prompt_block_shape(self):
        print("\nTEST 15: Prompt Block")
        expected = "\n".join([
            "[VITAIS CALCULADOS PELO MOTOR FISIOLÓGICO - USE ESTES VALORES EXATOS]",
            "FC: 80 bpm",
            "PA: 120/80 mmHg",
            "SpO2: 97%",
            "FR: 16 rpm",
            "Temp: 36.5°C",
            "Tempo de jogo: 0 min (00:00)",
        ])
        self.assertEqual(self.engine.to_prompt_block(), expected)

    def test_16_helpers(self):
        print("\nTEST 16: Helpers")
        self.assertEqual(format_game_time(0), "00:00")
        self.assertEqual(format_game_time(125), "02:05")
        self.assertEqual(normalize_text("Administrar Epinefrina 1mg"), "administrar_epinefrina_1mg")
        self.assertEqual(normalize_text("Reposição Volêmica"), "reposicao_volemica")
        self.assertEqual(detect_conditions("Hemorragia ativa e sangramento"), [ClinicalCondition.HEMORRAGIA])

        self.assertEqual(PatientStatus.from_label("Crítico"), PatientStatus.CRITICO)
        self.assertEqual(PatientStatus.from_label("OBITO"), PatientStatus.OBITO)
        self.assertEqual(PatientStatus.from_label(None), PatientStatus.ESTAVEL)
        self.assertTrue(PatientStatus.CURADO.is_terminal)

        snap = self.engine.snapshot()
        self.assertEqual(snap["formatted_time"], "00:00")
        self.assertEqual(snap["vitals"]["heart_rate"], 80)

    def test_17_lab_and_transfusion_text_is_not_a_condition(self):
        print("\nTEST 17: Ambiguous Keywords")
        # PCR here is C-reactive protein, not cardiac arrest
        self.assertEqual(detect_conditions("Exames: leucócitos 18000, PCR 180 mg/L."), [])
        self.assertEqual(detect_conditions("Trauma: transfundido plasma fresco congelado"), [])
        self.assertEqual(detect_conditions("Paciente em PCR"), [ClinicalCondition.PCR])
        self.assertEqual(detect_conditions("Crise asmática"), [ClinicalCondition.INSUFICIENCIA_RESPIRATORIA])

        self.engine.set_conditions_from_narrative("Pneumonia. PCR 180 mg/L, procalcitonina elevada")
        self.engine.tick(15, "stable")
        self.assertEqual(self.engine.get_vitals(), Vitals())

    def test_18_critical_drift_hits_the_bounds(self):
        print("\nTEST 18: Drift Saturates At Clamp Limits")
        self.engine.tick(60, PatientStatus.CRITICO)
        v = self.engine.get_vitals()
        print(f"   After 60min critical: {v}")
        self.assertEqual(v.heart_rate, 250)
        self.assertEqual(v.systolic_bp, 0)
        self.assertEqual(v.diastolic_bp, 0)
        self.assertEqual(v.respiratory_rate_bpm, 60)
        self.assertEqual(v.temp_celsius, 42.0)

        self.engine.set_conditions_from_narrative("Parada cardíaca, pneumotórax e hemorragia")
        self.engine.tick(30, PatientStatus.CRITICO)
        self.assertEqual(self.engine.get_vitals().sp_o2_percent, 0)

    def test_19_random_sequences_stay_within_limits(self):
        print("\nTEST 19: Clamp Invariant Over Random Sequences")
        rng = random.Random(2024)
        actions = [effect.keywords[0] for effect in INTERVENTION_LIBRARY.EFFECTS.values()]
        actions += ["Solicitar ECG", "Conversar com a família"]
        narratives = [
            "Choque séptico", "Infarto com supra de ST", "Hemorragia ativa",
            "Insuficiência respiratória", "Pneumotórax hipertensivo", "Paciente em PCR",
            "Paciente estável", "",
        ]
        statuses = list(PatientStatus) + ["desconhecido"]

        def assert_within_limits(step):
            vitals = self.engine.get_vitals().to_dict()
            for name, (low, high) in CLAMP_LIMITS.RANGES.items():
                self.assertTrue(low <= vitals[name] <= high, f"{name}={vitals[name]} at step {step}")
            for name in CLAMP_LIMITS.INTEGER_FIELDS:
                self.assertIsInstance(vitals[name], int)

        for step in range(400):
            roll = rng.random()
            if roll < 0.4:
                for _ in range(rng.randint(1, 4)):
                    self.engine.apply_intervention(rng.choice(actions))
            elif roll < 0.55:
                self.engine.set_conditions_from_narrative(rng.choice(narratives))
            else:
                self.engine.tick(rng.randint(0, 45), rng.choice(statuses))
            assert_within_limits(step)


if __name__ == '__main__':
    unittest.main()
