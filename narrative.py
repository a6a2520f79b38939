"""
MedSim: Narrative Boundary Adapter
==================================
Reads what the narrative generator (an LLM) sends back: the JSON turn
contract, the vitals prose it echoes and the debriefing sections it writes
at game over. This is the only boundary that raises on bad input.
"""

import json
import logging
import re
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from models import NarrativeParseError, PatientStatus

logger = logging.getLogger(__name__)


# --- 1. TURN CONTRACT (The Generator's JSON) ---

class _Lenient(BaseModel):
    # The generator sometimes adds keys of its own
    model_config = ConfigDict(extra="ignore")


class SimulationStatus(_Lenient):
    fase: str = Field("ANAMNESE", description="ANAMNESE|EXAME_FISICO|DIAGNOSTICO|TRATAMENTO|DESFECHO")
    estado_paciente: str = Field("ESTAVEL", description="ESTAVEL|INSTAVEL|CRITICO|OBITO|CURADO")
    vida_restante: float = 100
    current_score: float = 10.0
    tempo_de_jogo: str = "00:00"
    timer_seconds: Optional[int] = Field(0, ge=0)


class UserInterface(_Lenient):
    manchete: str = ""
    narrativa_principal: str = ""
    feedback_mentor: str = ""
    score_feedback: str = ""


class MedicalData(_Lenient):
    sinais_vitais: str = ""
    exames_resultados: str = ""


class Visualization(_Lenient):
    descricao_cenario_pt: str = ""
    image_generation_prompt: str = ""


class InteractionOption(_Lenient):
    id: str
    texto: str
    tipo: str = Field("LIVRE", description="EXAME|MEDICAMENTO|INTERVENCAO|LIVRE")


class NarrativeTurn(_Lenient):
    status_simulacao: SimulationStatus
    interface_usuario: UserInterface
    dados_medicos: MedicalData = Field(default_factory=MedicalData)
    visualizacao: Visualization = Field(default_factory=Visualization)
    opcoes_interacao: List[InteractionOption] = Field(default_factory=list)

    @property
    def patient_status(self) -> PatientStatus:
        return PatientStatus.from_label(self.status_simulacao.estado_paciente)

    @property
    def narrative_text(self) -> str:
        """Free text scanned for conditions and protocols."""
        parts = [
            self.interface_usuario.manchete,
            self.interface_usuario.narrativa_principal,
            self.dados_medicos.exames_resultados,
        ]
        return "\n".join(p for p in parts if p)

    def reported_vitals(self) -> Dict[str, float]:
        return parse_vitals_from_narrative(self.dados_medicos.sinais_vitais)

    def debriefing_sections(self) -> Dict[str, str]:
        return parse_debriefing_sections(self.interface_usuario.feedback_mentor)


_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def parse_narrative_response(raw: Union[str, bytes, dict]) -> NarrativeTurn:
    """
    Strips markdown fences and validates the turn contract.
    Raises NarrativeParseError on invalid JSON or shape.
    """
    if isinstance(raw, dict):
        data = raw
    else:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        cleaned = _FENCE.sub("", raw or "").strip()
        if not cleaned:
            raise NarrativeParseError("Empty narrative response")
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.warning(f"Narrative is not valid JSON: {e}")
            raise NarrativeParseError(f"Narrative is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise NarrativeParseError("Narrative JSON must be an object")

    try:
        return NarrativeTurn.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Narrative JSON has an invalid shape: {e.error_count()} error(s)")
        raise NarrativeParseError(f"Narrative JSON has an invalid shape: {e}") from e


# --- 2. VITALS PROSE ---

_NUM = r"(\d{1,3}(?:[.,]\d+)?)"

VITAL_PATTERNS = {
    "heart_rate": re.compile(r"\b(?:FC|HR)\s*[:=]?\s*" + _NUM),
    "blood_pressure": re.compile(r"\b(?:PA|BP)\s*[:=]?\s*(\d{2,3})\s*[/xX]\s*(\d{2,3})"),
    "sp_o2_percent": re.compile(r"\b(?:SpO2|SPO2|SatO2|Sat\s*O2)\s*[:=]?\s*" + _NUM),
    "respiratory_rate_bpm": re.compile(r"\b(?:FR|RR)\s*[:=]?\s*" + _NUM),
    "temp_celsius": re.compile(r"\b(?:Temp(?:eratura)?|Tax|T)\s*[:=]\s*" + _NUM + r"|\b" + _NUM + r"\s*°\s*C"),
}


def _to_number(text: str) -> float:
    return float(text.replace(",", "."))


def parse_vitals_from_narrative(text: Optional[str]) -> Dict[str, float]:
    """
    Partial vitals from prose like
    'FC: 110 bpm | PA: 160/95 mmHg | SpO2: 94% | FR: 22 irpm | Temp: 38,2°C'.
    Fields that cannot be read are left out.
    """
    if not text:
        return {}
    found: Dict[str, float] = {}

    for name in ("heart_rate", "sp_o2_percent", "respiratory_rate_bpm"):
        m = VITAL_PATTERNS[name].search(text)
        if m:
            found[name] = int(round(_to_number(m.group(1))))

    m = VITAL_PATTERNS["blood_pressure"].search(text)
    if m:
        found["systolic_bp"] = int(m.group(1))
        found["diastolic_bp"] = int(m.group(2))

    m = VITAL_PATTERNS["temp_celsius"].search(text)
    if m:
        found["temp_celsius"] = _to_number(m.group(1) or m.group(2))

    return found


# --- 3. DEBRIEFING ---

DEBRIEFING_SECTIONS = {
    "resumo": "RESUMO",
    "pontos_fortes": "PONTOS FORTES",
    "pontos_de_melhoria": "PONTOS DE MELHORIA",
    "gold_standard": "GOLD STANDARD",
}


def parse_debriefing_sections(text: Optional[str]) -> Dict[str, str]:
    """Splits the game-over mentor feedback into its bracketed sections."""
    sections = {}
    for key, tag in DEBRIEFING_SECTIONS.items():
        m = re.search(r"\[" + re.escape(tag) + r"\]([\s\S]*?)(?=\[|$)", text or "")
        if m:
            sections[key] = m.group(1).strip()
    return sections
