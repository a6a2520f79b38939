import unittest
from models import (
    ActionTimelineEntry, ChecklistStatus, ProtocolDefinition, ProtocolItem
)
from protocols import (
    PROTOCOLS, detect_protocol, matching_protocols, get_all_protocols, get_protocol,
    evaluate_protocol, evaluation_to_prompt_block
)

STEMI = "IAM com Supra de ST (STEMI)"
SEPSIS = "Sepse / Choque Séptico"


class TestProtocolCatalog(unittest.TestCase):

    def test_01_catalog_shape(self):
        print("\nTEST 1: Catalog")
        names = [p.name for p in get_all_protocols()]
        self.assertEqual(names, [
            STEMI,
            SEPSIS,
            "PCR / Parada Cardiorrespiratória",
            "Insuficiência Respiratória Aguda",
            "Trauma / Choque Hemorrágico",
        ])
        for protocol in PROTOCOLS:
            self.assertTrue(protocol.items)
            self.assertEqual(len({i.id for i in protocol.items}), len(protocol.items))
            for item in protocol.items:
                self.assertTrue(0 < item.weight <= 1)
                self.assertTrue(item.reference)

    def test_02_detection_first_hit_wins(self):
        print("\nTEST 2: Detection Order")
        text = "Sepse de foco pulmonar, evoluindo com infarto"
        self.assertEqual(detect_protocol(text).name, STEMI)
        self.assertEqual([p.name for p in matching_protocols(text)], [STEMI, SEPSIS])
        self.assertEqual(detect_protocol("Choque séptico refratário").name, SEPSIS)
        self.assertEqual(detect_protocol("Politrauma após colisão").name, "Trauma / Choque Hemorrágico")
        self.assertIsNone(detect_protocol("Paciente com dor abdominal"))
        self.assertIsNone(detect_protocol(""))

    def test_03_lookup_by_name(self):
        self.assertEqual(get_protocol(SEPSIS).items[0].id, "sepse_lactato")
        self.assertIsNone(get_protocol("Inexistente"))


class TestProtocolEvaluator(unittest.TestCase):

    def setUp(self):
        self.sepsis = get_protocol(SEPSIS)
        self.stemi = get_protocol(STEMI)

    def test_01_done_late_missed(self):
        """Antibiotic on time (0.25), lactate late (0.12 x 0.5): 3.1/10"""
        print("\nTEST 1: Weighted Score")
        timeline = [
            ActionTimelineEntry("Ceftriaxona 2g IV", 30, True),
            ActionTimelineEntry("Dosar lactato", 40),
        ]
        evaluation = evaluate_protocol(self.sepsis, timeline, set())
        by_id = {r.item_id: r for r in evaluation.results}
        print(f"   Score: {evaluation.adherence_score}")

        self.assertEqual(by_id["sepse_atb"].status, ChecklistStatus.DONE)
        self.assertEqual(by_id["sepse_atb"].performed_at, 30)
        self.assertEqual(by_id["sepse_lactato"].status, ChecklistStatus.LATE)
        self.assertEqual(by_id["sepse_hemocultura"].status, ChecklistStatus.MISSED)
        self.assertIsNone(by_id["sepse_hemocultura"].performed_at)
        self.assertEqual(evaluation.adherence_score, 3.1)

    def test_02_items_without_target_are_never_late(self):
        timeline = [ActionTimelineEntry("Iniciar noradrenalina", 500)]
        evaluation = evaluate_protocol(self.sepsis, timeline, set())
        by_id = {r.item_id: r for r in evaluation.results}
        self.assertEqual(by_id["sepse_vasopressor"].status, ChecklistStatus.DONE)

    def test_03_applied_set_fallback_uses_last_entry(self):
        print("\nTEST 3: Applied-Set Fallback")
        timeline = [
            ActionTimelineEntry("Conversar com a família", 0),
            ActionTimelineEntry("Avaliar dor", 20),
        ]
        evaluation = evaluate_protocol(self.stemi, timeline, {"aas"})
        by_id = {r.item_id: r for r in evaluation.results}
        self.assertEqual(by_id["iam_aas"].status, ChecklistStatus.LATE)
        self.assertEqual(by_id["iam_aas"].performed_at, 20)

        empty = evaluate_protocol(self.stemi, [], {"aas"})
        self.assertTrue(all(r.status == ChecklistStatus.MISSED for r in empty.results))
        self.assertEqual(empty.adherence_score, 0.0)

    def test_04_empty_protocol_scores_full(self):
        protocol = ProtocolDefinition(name="Vazio", detection_keywords=("vazio",), items=())
        self.assertEqual(evaluate_protocol(protocol, [], set()).adherence_score, 10.0)

    def test_05_deterministic(self):
        timeline = [ActionTimelineEntry("ECG", 3), ActionTimelineEntry("AAS 300mg", 8)]
        a = evaluate_protocol(self.stemi, timeline, {"ecg", "aas"})
        b = evaluate_protocol(self.stemi, timeline, {"ecg", "aas"})
        self.assertEqual(a, b)
        self.assertTrue(0.0 <= a.adherence_score <= 10.0)
        self.assertEqual(a.to_dict()["results"][0]["status"], "done")

    def test_06_prompt_block(self):
        print("\nTEST 6: Checklist Prompt Block")
        timeline = [
            ActionTimelineEntry("Ceftriaxona 2g IV", 30, True),
            ActionTimelineEntry("Dosar lactato", 40),
        ]
        block = evaluation_to_prompt_block(evaluate_protocol(self.sepsis, timeline, set()))
        print(block)
        lines = block.split("\n")
        self.assertEqual(lines[0], "[CHECKLIST DE PROTOCOLO: Sepse / Choque Séptico]")
        self.assertEqual(lines[1], "Nota de Aderência ao Protocolo: 3.1/10.0")
        self.assertEqual(lines[2], "")
        self.assertEqual(lines[3], "⏱️ Dosagem de Lactato (realizado em 40min - meta: <15min - ATRASADO)")
        self.assertEqual(lines[4], "   📚 Surviving Sepsis Campaign 2021 - Measure lactate within 1 hour")
        self.assertIn("❌ Hemoculturas antes do ATB (meta: <30min - NÃO REALIZADO)", lines)
        self.assertIn("✅ Antibiótico de amplo espectro em <60min (realizado em 30min - meta: <60min)", lines)
        self.assertIn("❌ Vasopressor se PAM <65 após volume (NÃO REALIZADO)", lines)

    def test_07_custom_item(self):
        item = ProtocolItem(id="x", label="Teste", match_keywords=("Reposição Volêmica",),
                            target_minutes=10, weight=1.0, reference="ref")
        protocol = ProtocolDefinition(name="Custom", detection_keywords=("custom",), items=(item,))
        evaluation = evaluate_protocol(protocol, [ActionTimelineEntry("reposição volêmica 1L", 5)], set())
        self.assertEqual(evaluation.results[0].status, ChecklistStatus.DONE)
        self.assertEqual(evaluation.adherence_score, 10.0)


if __name__ == '__main__':
    unittest.main()
