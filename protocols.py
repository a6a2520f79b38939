# protocols.py
"""
Evidence-based protocol checklists and the adherence evaluator.

Each protocol is an ordered list of mandatory actions with time targets,
scoring weights and a bibliographic reference. The evaluator scores the
player's timeline against the detected protocol for the debriefing.
"""

import logging
import math
from typing import Iterable, List, Optional, Set

from models import (
    ActionTimelineEntry,
    ChecklistResult,
    ChecklistStatus,
    ProtocolDefinition,
    ProtocolEvaluation,
    ProtocolItem,
    normalize_text,
)
from constants import SIMULATION_CONSTANTS

logger = logging.getLogger(__name__)


# --- 1. PROTOCOL LIBRARY (Order matters: first detection hit wins) ---

PROTOCOLS = (
    ProtocolDefinition(
        name="IAM com Supra de ST (STEMI)",
        detection_keywords=("iam", "infarto", "stemi", "supra de st", "supradesnivelamento", "infarto agudo"),
        items=(
            ProtocolItem(
                id="iam_ecg",
                label="ECG em até 10 minutos",
                match_keywords=("ecg", "eletrocardiograma"),
                target_minutes=10,
                weight=0.15,
                reference="AHA/ACC 2023 STEMI Guidelines - ECG within 10 min of first medical contact",
            ),
            ProtocolItem(
                id="iam_aas",
                label="AAS 150-300mg VO",
                match_keywords=("aas", "aspirina", "acido acetilsalicilico"),
                target_minutes=15,
                weight=0.15,
                reference="ESC 2023 ACS Guidelines - Aspirin loading dose as soon as possible",
            ),
            ProtocolItem(
                id="iam_clopidogrel",
                label="Clopidogrel / Inibidor P2Y12",
                match_keywords=("clopidogrel", "ticagrelor", "prasugrel", "p2y12"),
                target_minutes=30,
                weight=0.12,
                reference="ESC 2023 - Dual antiplatelet therapy (DAPT) recommended",
            ),
            ProtocolItem(
                id="iam_heparina",
                label="Anticoagulação (Heparina)",
                match_keywords=("heparina", "enoxaparina", "anticoagul"),
                target_minutes=30,
                weight=0.12,
                reference="AHA/ACC 2023 - Anticoagulation during PCI or fibrinolysis",
            ),
            ProtocolItem(
                id="iam_morfina",
                label="Analgesia (Morfina se dor intensa)",
                match_keywords=("morfina", "fentanil", "analgesia"),
                target_minutes=None,
                weight=0.06,
                reference="AHA 2023 - Morphine for refractory chest pain (use with caution)",
            ),
            ProtocolItem(
                id="iam_reperfusao",
                label="Reperfusão (Cateterismo/Trombólise) em <90min",
                match_keywords=("cateterismo", "angioplastia", "reperfusao", "trombolise", "trombolitico", "fibrinolitico"),
                target_minutes=90,
                weight=0.25,
                reference="AHA/ACC 2023 - Door-to-Balloon <90 min, Door-to-Needle <30 min",
            ),
            ProtocolItem(
                id="iam_monitor",
                label="Monitorização contínua",
                match_keywords=("monitoriz", "monitor", "oximetria", "o2_suplementar", "oxigenio"),
                target_minutes=5,
                weight=0.08,
                reference="AHA ACLS 2020 - Continuous cardiac monitoring in ACS",
            ),
            ProtocolItem(
                id="iam_acesso",
                label="Acesso venoso periférico",
                match_keywords=("acesso_venoso", "acesso venoso", "veia", "jelco"),
                target_minutes=10,
                weight=0.07,
                reference="ACLS 2020 - IV access for medication administration",
            ),
        ),
    ),
    ProtocolDefinition(
        name="Sepse / Choque Séptico",
        detection_keywords=("sepse", "sepsis", "choque septico", "choque séptico", "infeccao grave"),
        items=(
            ProtocolItem(
                id="sepse_lactato",
                label="Dosagem de Lactato",
                match_keywords=("lactato",),
                target_minutes=15,
                weight=0.12,
                reference="Surviving Sepsis Campaign 2021 - Measure lactate within 1 hour",
            ),
            ProtocolItem(
                id="sepse_hemocultura",
                label="Hemoculturas antes do ATB",
                match_keywords=("hemocultura", "cultura"),
                target_minutes=30,
                weight=0.12,
                reference="SSC 2021 - Obtain blood cultures before antimicrobials when possible",
            ),
            ProtocolItem(
                id="sepse_atb",
                label="Antibiótico de amplo espectro em <60min",
                match_keywords=("antibiotico", "ceftriaxona", "piperacilina", "meropenem", "vancomicina", "tazobactam"),
                target_minutes=60,
                weight=0.25,
                reference="SSC 2021 - Administer antimicrobials within 1 hour of sepsis recognition",
            ),
            ProtocolItem(
                id="sepse_volume",
                label="Cristaloide 30ml/kg em <3h",
                match_keywords=("cristaloide", "ringer", "soro fisiologico", "reposicao_volemica", "volume"),
                target_minutes=180,
                weight=0.20,
                reference="SSC 2021 - 30 mL/kg IV crystalloid for hypotension or lactate >= 4",
            ),
            ProtocolItem(
                id="sepse_vasopressor",
                label="Vasopressor se PAM <65 após volume",
                match_keywords=("noradrenalina", "vasopressor", "norepinefrina"),
                target_minutes=None,
                weight=0.12,
                reference="SSC 2021 - Norepinephrine first-line vasopressor, target MAP >= 65 mmHg",
            ),
            ProtocolItem(
                id="sepse_acesso",
                label="Acesso venoso",
                match_keywords=("acesso_venoso", "acesso venoso", "veia"),
                target_minutes=10,
                weight=0.07,
                reference="SSC 2021 - IV access for fluid resuscitation",
            ),
            ProtocolItem(
                id="sepse_monitor",
                label="Monitorização + reavaliação",
                match_keywords=("monitoriz", "monitor", "reavaliar", "reavaliacao"),
                target_minutes=None,
                weight=0.06,
                reference="SSC 2021 - Reassess volume status and tissue perfusion",
            ),
            ProtocolItem(
                id="sepse_gasometria",
                label="Gasometria arterial",
                match_keywords=("gasometria",),
                target_minutes=30,
                weight=0.06,
                reference="SSC 2021 - Assess acid-base status early",
            ),
        ),
    ),
    ProtocolDefinition(
        name="PCR / Parada Cardiorrespiratória",
        detection_keywords=("pcr", "parada cardior", "parada cardiaca", "assistolia", "fibrilacao ventricular", "aesp"),
        items=(
            ProtocolItem(
                id="pcr_rcp",
                label="Iniciar RCP imediatamente",
                match_keywords=("rcp", "massagem_cardiaca", "compressoes", "massagem cardiaca"),
                target_minutes=1,
                weight=0.30,
                reference="AHA ACLS 2020 - Begin high-quality CPR immediately",
            ),
            ProtocolItem(
                id="pcr_defib",
                label="Desfibrilação (se ritmo chocável)",
                match_keywords=("desfibrilacao", "desfibrilador", "choque"),
                target_minutes=3,
                weight=0.25,
                reference="AHA ACLS 2020 - Defibrillation within 3 min for VF/pVT",
            ),
            ProtocolItem(
                id="pcr_epinefrina",
                label="Epinefrina 1mg IV",
                match_keywords=("epinefrina", "adrenalina"),
                target_minutes=5,
                weight=0.15,
                reference="AHA ACLS 2020 - Epinephrine q3-5 min during cardiac arrest",
            ),
            ProtocolItem(
                id="pcr_via_aerea",
                label="Garantir via aérea avançada",
                match_keywords=("intubacao", "via aerea", "tubo"),
                target_minutes=10,
                weight=0.15,
                reference="AHA ACLS 2020 - Advanced airway when feasible without interrupting CPR",
            ),
            ProtocolItem(
                id="pcr_acesso",
                label="Acesso venoso/intraósseo",
                match_keywords=("acesso_venoso", "acesso venoso", "intraosseo"),
                target_minutes=5,
                weight=0.08,
                reference="AHA ACLS 2020 - IV/IO access for drug delivery",
            ),
            ProtocolItem(
                id="pcr_amiodarona",
                label="Amiodarona (se FV/TV refratária)",
                match_keywords=("amiodarona",),
                target_minutes=None,
                weight=0.07,
                reference="AHA ACLS 2020 - Amiodarone 300mg for refractory VF/pVT",
            ),
        ),
    ),
    ProtocolDefinition(
        name="Insuficiência Respiratória Aguda",
        detection_keywords=("insuficiencia respiratoria", "irpa", "dispneia aguda", "edema pulmonar", "asma grave"),
        items=(
            ProtocolItem(
                id="irpa_o2",
                label="Oxigênio suplementar imediato",
                match_keywords=("o2_suplementar", "oxigenio", "mascara", "cateter nasal"),
                target_minutes=2,
                weight=0.20,
                reference="BTS 2017 - Oxygen therapy to maintain SpO2 94-98%",
            ),
            ProtocolItem(
                id="irpa_monitor",
                label="Monitorização (SpO2, FR)",
                match_keywords=("monitoriz", "monitor", "oximetria"),
                target_minutes=5,
                weight=0.10,
                reference="BTS 2017 - Continuous pulse oximetry monitoring",
            ),
            ProtocolItem(
                id="irpa_gasometria",
                label="Gasometria arterial",
                match_keywords=("gasometria",),
                target_minutes=15,
                weight=0.12,
                reference="BTS 2017 - ABG to assess ventilation and acid-base",
            ),
            ProtocolItem(
                id="irpa_rx",
                label="RX de Tórax",
                match_keywords=("rx_torax", "raio_x", "radiografia", "rx torax", "raio x"),
                target_minutes=30,
                weight=0.10,
                reference="ATS/ERS 2017 - Chest X-ray for acute respiratory failure evaluation",
            ),
            ProtocolItem(
                id="irpa_broncodilatador",
                label="Broncodilatador (se broncoespasmo)",
                match_keywords=("salbutamol", "broncodilatador", "nebulizacao", "fenoterol"),
                target_minutes=10,
                weight=0.12,
                reference="GINA 2023 - Short-acting beta-agonist for acute bronchospasm",
            ),
            ProtocolItem(
                id="irpa_corticoide",
                label="Corticóide (se indicado)",
                match_keywords=("hidrocortisona", "corticoide", "metilprednisolona", "dexametasona", "prednisona"),
                target_minutes=30,
                weight=0.10,
                reference="GINA 2023 - Systemic corticosteroids in severe exacerbations",
            ),
            ProtocolItem(
                id="irpa_intubacao",
                label="Intubação (se falha de VNI/deterioração)",
                match_keywords=("intubacao", "ventilacao_mecanica"),
                target_minutes=None,
                weight=0.15,
                reference="ATS/ERS 2017 - Invasive ventilation for refractory respiratory failure",
            ),
            ProtocolItem(
                id="irpa_acesso",
                label="Acesso venoso",
                match_keywords=("acesso_venoso", "acesso venoso"),
                target_minutes=10,
                weight=0.06,
                reference="General - IV access for medication administration",
            ),
        ),
    ),
    ProtocolDefinition(
        name="Trauma / Choque Hemorrágico",
        detection_keywords=("trauma", "choque hemorragico", "choque hemorrágico", "hemorragia", "politrauma"),
        items=(
            ProtocolItem(
                id="trauma_abcde",
                label="Avaliação ABCDE primária",
                match_keywords=("exame_fisico", "exame fisico", "abcde", "avaliacao primaria"),
                target_minutes=5,
                weight=0.15,
                reference="ATLS 10th Ed - Primary survey ABCDE approach",
            ),
            ProtocolItem(
                id="trauma_acesso",
                label="Dois acessos venosos calibrosos",
                match_keywords=("acesso_venoso", "acesso venoso", "dois acessos"),
                target_minutes=5,
                weight=0.10,
                reference="ATLS 10th Ed - Two large-bore IV lines",
            ),
            ProtocolItem(
                id="trauma_volume",
                label="Reposição volêmica agressiva",
                match_keywords=("cristaloide", "ringer", "reposicao_volemica", "volume"),
                target_minutes=15,
                weight=0.18,
                reference="ATLS 10th Ed - Isotonic crystalloid for hemorrhagic shock",
            ),
            ProtocolItem(
                id="trauma_hemoderivado",
                label="Hemoderivados (se classe III/IV)",
                match_keywords=("hemoderivado", "concentrado de hemacias", "sangue", "transfusao"),
                target_minutes=30,
                weight=0.15,
                reference="ATLS 10th Ed - Blood transfusion for class III/IV hemorrhage",
            ),
            ProtocolItem(
                id="trauma_imagem",
                label="Exame de imagem (FAST/TC)",
                match_keywords=("fast", "ultrassom", "tc", "tomografia"),
                target_minutes=30,
                weight=0.12,
                reference="ATLS 10th Ed - FAST exam in trauma assessment",
            ),
            ProtocolItem(
                id="trauma_o2",
                label="Oxigênio suplementar",
                match_keywords=("o2_suplementar", "oxigenio"),
                target_minutes=5,
                weight=0.08,
                reference="ATLS 10th Ed - High-flow O2 for trauma patients",
            ),
            ProtocolItem(
                id="trauma_drenagem",
                label="Drenagem torácica (se pneumo/hemotórax)",
                match_keywords=("drenagem_torax", "drenagem toracica"),
                target_minutes=None,
                weight=0.12,
                reference="ATLS 10th Ed - Tube thoracostomy for hemopneumothorax",
            ),
        ),
    ),
)


# --- 2. DETECTION ---

def _hits(normalized_text: str, keywords: Iterable[str]) -> bool:
    return any(normalize_text(kw) in normalized_text for kw in keywords)


def detect_protocol(narrative_text: str) -> Optional[ProtocolDefinition]:
    """First protocol (catalog order) whose detection keyword appears. No best-match."""
    norm = normalize_text(narrative_text)
    for protocol in PROTOCOLS:
        if _hits(norm, protocol.detection_keywords):
            return protocol
    return None


def matching_protocols(narrative_text: str) -> List[ProtocolDefinition]:
    """Diagnostic: every protocol the text would trigger, in catalog order."""
    norm = normalize_text(narrative_text)
    return [p for p in PROTOCOLS if _hits(norm, p.detection_keywords)]


def get_all_protocols() -> List[ProtocolDefinition]:
    return list(PROTOCOLS)


def get_protocol(name: str) -> Optional[ProtocolDefinition]:
    for protocol in PROTOCOLS:
        if protocol.name == name:
            return protocol
    return None


# --- 3. EVALUATION ---

class ProtocolEvaluator:
    @staticmethod
    def _find_entry(item: ProtocolItem,
                    timeline: List[ActionTimelineEntry],
                    applied_interventions: Set[str]) -> Optional[ActionTimelineEntry]:
        # 1. Literal match in the timeline (earliest entry wins)
        for entry in timeline:
            if _hits(normalize_text(entry.action_text), item.match_keywords):
                return entry

        # 2. Fallback: the engine matched it as an intervention but the text never
        # said the keyword. Timestamped at the LAST timeline entry (approximation).
        for kw in item.match_keywords:
            if normalize_text(kw) in applied_interventions:
                return timeline[-1] if timeline else None
        return None

    @staticmethod
    def evaluate(protocol: ProtocolDefinition,
                 timeline: List[ActionTimelineEntry],
                 applied_interventions: Set[str]) -> ProtocolEvaluation:
        results = []
        total_weight = 0.0
        earned_weight = 0.0
        applied = set(applied_interventions or ())
        entries = list(timeline or ())

        for item in protocol.items:
            total_weight += item.weight
            matched = ProtocolEvaluator._find_entry(item, entries, applied)

            if matched is None:
                status = ChecklistStatus.MISSED
                performed_at = None
            else:
                performed_at = matched.game_time_minutes
                is_late = item.target_minutes is not None and performed_at > item.target_minutes
                if is_late:
                    status = ChecklistStatus.LATE
                    earned_weight += item.weight * SIMULATION_CONSTANTS.LATE_CREDIT_FACTOR
                else:
                    status = ChecklistStatus.DONE
                    earned_weight += item.weight

            results.append(ChecklistResult(
                item_id=item.id,
                label=item.label,
                status=status,
                performed_at=performed_at,
                target_minutes=item.target_minutes,
                reference=item.reference,
                weight=item.weight,
            ))

        max_score = SIMULATION_CONSTANTS.MAX_ADHERENCE_SCORE
        raw_score = (earned_weight / total_weight) * max_score if total_weight > 0 else max_score
        score = math.floor(raw_score * 10 + 0.5) / 10
        score = max(0.0, min(score, max_score))

        logger.info(f"Protocol '{protocol.name}' adherence: {score}/10")
        return ProtocolEvaluation(
            protocol_name=protocol.name,
            results=tuple(results),
            adherence_score=score,
        )


def evaluate_protocol(protocol: ProtocolDefinition,
                      timeline: List[ActionTimelineEntry],
                      applied_interventions: Set[str]) -> ProtocolEvaluation:
    return ProtocolEvaluator.evaluate(protocol, timeline, applied_interventions)


_STATUS_ICONS = {
    ChecklistStatus.DONE: "✅",
    ChecklistStatus.LATE: "⏱️",
    ChecklistStatus.MISSED: "❌",
}


def evaluation_to_prompt_block(evaluation: ProtocolEvaluation) -> str:
    """Fixed-format report for the debriefing. Late/missed items carry their citation."""
    lines = [
        f"[CHECKLIST DE PROTOCOLO: {evaluation.protocol_name}]",
        f"Nota de Aderência ao Protocolo: {evaluation.adherence_score:.1f}/10.0",
        "",
    ]
    for r in evaluation.results:
        detail = ""
        if r.status == ChecklistStatus.DONE and r.target_minutes is not None:
            detail = f" (realizado em {r.performed_at}min - meta: <{r.target_minutes}min)"
        elif r.status == ChecklistStatus.LATE:
            detail = f" (realizado em {r.performed_at}min - meta: <{r.target_minutes}min - ATRASADO)"
        elif r.status == ChecklistStatus.MISSED:
            if r.target_minutes is not None:
                detail = f" (meta: <{r.target_minutes}min - NÃO REALIZADO)"
            else:
                detail = " (NÃO REALIZADO)"
        lines.append(f"{_STATUS_ICONS[r.status]} {r.label}{detail}")
        if r.status != ChecklistStatus.DONE:
            lines.append(f"   📚 {r.reference}")
    return "\n".join(lines)
