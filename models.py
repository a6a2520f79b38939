"""
MedSim: Data Dictionary & Variable Definitions
==============================================
This module defines the state space of the deterministic physiology engine.
It includes the Vitals vector, the static catalog records (Interventions,
Conditions, Protocols), the player's Action Timeline and the case-generation
profile.

Almost no logic lives here. The only behaviour is the keyword normaliser that
every catalog lookup shares, and small helpers to build Vitals from partial data.
"""

import unicodedata
import re
from dataclasses import dataclass, field, replace, asdict
from enum import Enum
from typing import Dict, Optional, Tuple


class NarrativeParseError(ValueError):
    """Raised when the narrative generator returns something we cannot read."""
    pass


class SessionNotFoundError(KeyError):
    """Raised when a session id is not present in the registry."""
    pass


class SessionEndedError(ValueError):
    """Raised when a turn is played after the patient died or was discharged."""
    pass


_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_text(text: str) -> str:
    """
    Shared keyword normaliser for every catalog lookup.
    Lowercase -> strip diacritics -> anything outside [a-z0-9] becomes '_'.
    'Administrar Epinefrina 1mg' -> 'administrar_epinefrina_1mg'
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text).lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("_", stripped)


# --- 1. ENUMS (Standardizing the Vocabulary) ---

class PatientStatus(Enum):
    """Acuity label emitted by the narrative generator (estado_paciente)."""
    ESTAVEL = "ESTAVEL"
    INSTAVEL = "INSTAVEL"
    CRITICO = "CRITICO"
    OBITO = "OBITO"
    CURADO = "CURADO"

    @property
    def is_terminal(self) -> bool:
        return self in (PatientStatus.OBITO, PatientStatus.CURADO)

    @classmethod
    def from_label(cls, label) -> "PatientStatus":
        """
        Lenient parser. Accepts the generator vocabulary ('INSTAVEL', 'Crítico')
        and the English names ('unstable'). Anything else is ESTAVEL.
        """
        if isinstance(label, PatientStatus):
            return label
        key = normalize_text(label or "").strip("_")
        if not key:
            return cls.ESTAVEL
        for status in cls:
            if status.value.lower() == key:
                return status
        return _STATUS_ALIASES.get(key, cls.ESTAVEL)


_STATUS_ALIASES = {
    "stable": PatientStatus.ESTAVEL,
    "unstable": PatientStatus.INSTAVEL,
    "critical": PatientStatus.CRITICO,
    "deceased": PatientStatus.OBITO,
    "dead": PatientStatus.OBITO,
    "cured": PatientStatus.CURADO,
}


class Intervention(Enum):
    """
    Catalog keys. The value is the normalized key recorded in the
    applied-intervention set. Declaration order is NOT the matching order;
    INTERVENTION_LIBRARY.EFFECTS defines the priority list.
    """
    # Medications
    EPINEFRINA = "epinefrina"
    ADRENALINA = "adrenalina"
    ATROPINA = "atropina"
    AMIODARONA = "amiodarona"
    NORADRENALINA = "noradrenalina"
    DOBUTAMINA = "dobutamina"
    NITROPRUSSIATO = "nitroprussiato"
    FUROSEMIDA = "furosemida"
    DIPIRONA = "dipirona"
    PARACETAMOL = "paracetamol"
    MIDAZOLAM = "midazolam"
    FENTANIL = "fentanil"
    MORFINA = "morfina"
    SALBUTAMOL = "salbutamol"
    HIDROCORTISONA = "hidrocortisona"
    ANTIBIOTICO = "antibiotico"
    ANTIAGREGANTE = "antiagregante"
    ANTICOAGULANTE = "anticoagulante"

    # Procedures
    O2_SUPLEMENTAR = "o2_suplementar"
    OXIGENIO = "oxigenio"
    VENTILACAO_MECANICA = "ventilacao_mecanica"
    INTUBACAO = "intubacao"
    ACESSO_VENOSO = "acesso_venoso"
    DESFIBRILACAO = "desfibrilacao"
    CARDIOVERSAO = "cardioversao"
    DRENAGEM_TORAX = "drenagem_torax"
    REPOSICAO_VOLEMICA = "reposicao_volemica"
    CRISTALOIDE = "cristaloide"
    HEMODERIVADO = "hemoderivado"
    REPERFUSAO = "reperfusao"
    RCP = "rcp"
    MASSAGEM_CARDIACA = "massagem_cardiaca"


class ClinicalCondition(Enum):
    """Syndromes detected in the narrative that drive recurring penalties."""
    SEPSE = "sepse"
    IAM = "iam"
    HEMORRAGIA = "hemorragia"
    INSUFICIENCIA_RESPIRATORIA = "insuficiencia_respiratoria"
    PNEUMOTORAX = "pneumotorax"
    PCR = "pcr"


class ChecklistStatus(Enum):
    DONE = "done"
    LATE = "late"
    MISSED = "missed"


class Comorbidity(Enum):
    DM2 = "DM2"
    HAS = "HAS"
    DPOC = "DPOC"
    ICC = "ICC"
    IRC = "IRC"
    OBESIDADE = "Obesidade"
    TABAGISMO = "Tabagismo"
    HIGIDO = "Hígido"  # Healthy sentinel


class Severity(Enum):
    LEVE = "leve"
    MODERADA = "moderada"
    GRAVE = "grave"


# --- 2. VITALS LAYER (The Numeric Vector) ---

@dataclass
class VitalsDelta:
    """
    A signed change per vital sign. Used for intervention effects,
    per-minute decay profiles and condition penalties. Missing = 0.
    """
    heart_rate: float = 0.0
    systolic_bp: float = 0.0
    diastolic_bp: float = 0.0
    sp_o2_percent: float = 0.0
    respiratory_rate_bpm: float = 0.0
    temp_celsius: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not any(asdict(self).values())


@dataclass
class Vitals:
    """
    The authoritative vitals vector. Integer fields are whole numbers once
    clamped; temperature keeps one decimal.
    """
    heart_rate: int = 80            # bpm
    systolic_bp: int = 120          # mmHg
    diastolic_bp: int = 80          # mmHg
    sp_o2_percent: int = 97         # %
    respiratory_rate_bpm: int = 16  # rpm
    temp_celsius: float = 36.5      # °C

    def plus(self, delta: VitalsDelta, times: float = 1.0) -> "Vitals":
        """Raw (unclamped) sum. Callers must clamp before storing."""
        return Vitals(
            heart_rate=self.heart_rate + delta.heart_rate * times,
            systolic_bp=self.systolic_bp + delta.systolic_bp * times,
            diastolic_bp=self.diastolic_bp + delta.diastolic_bp * times,
            sp_o2_percent=self.sp_o2_percent + delta.sp_o2_percent * times,
            respiratory_rate_bpm=self.respiratory_rate_bpm + delta.respiratory_rate_bpm * times,
            temp_celsius=self.temp_celsius + delta.temp_celsius * times,
        )

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_partial(cls, data: Optional[dict], base: Optional["Vitals"] = None) -> "Vitals":
        """Defaults (or `base`) overridden by any known, numeric key in `data`."""
        start = replace(base) if base is not None else cls()
        if not data:
            return start
        overrides = {}
        for key, value in data.items():
            if key in VITAL_FIELDS and isinstance(value, (int, float)) and not isinstance(value, bool):
                overrides[key] = value
        return replace(start, **overrides)


VITAL_FIELDS: Tuple[str, ...] = (
    "heart_rate", "systolic_bp", "diastolic_bp",
    "sp_o2_percent", "respiratory_rate_bpm", "temp_celsius",
)


# --- 3. STATIC CATALOG RECORDS ---

@dataclass(frozen=True)
class InterventionEffect:
    """One entry of the intervention catalog."""
    keywords: Tuple[str, ...]          # Aliases that select this entry
    delta: VitalsDelta = field(default_factory=VitalsDelta)
    time_cost_minutes: int = 5         # Game-time the action consumes


@dataclass(frozen=True)
class ConditionRule:
    """Recurring penalty applied every `interval_minutes` until mitigated."""
    keywords: Tuple[str, ...]
    interval_minutes: int
    penalty: VitalsDelta
    mitigated_by: Tuple[str, ...]      # Normalized intervention keys


@dataclass(frozen=True)
class ProtocolItem:
    id: str
    label: str
    match_keywords: Tuple[str, ...]
    target_minutes: Optional[int]      # None = no time constraint
    weight: float                      # (0, 1]
    reference: str


@dataclass(frozen=True)
class ProtocolDefinition:
    name: str
    detection_keywords: Tuple[str, ...]
    items: Tuple[ProtocolItem, ...]


# --- 4. DYNAMIC STATE (The Session Record) ---

@dataclass(frozen=True)
class ActionTimelineEntry:
    action_text: str
    game_time_minutes: int
    is_critical: bool = False


@dataclass
class ActionOutcome:
    """What one player turn did to the patient. Sent back with the next prompt block."""
    entry: ActionTimelineEntry
    intervention_matched: bool
    minutes_elapsed: int
    vitals: Vitals
    prompt_block: str

    def to_dict(self) -> dict:
        return {
            "action_text": self.entry.action_text,
            "game_time_minutes": self.entry.game_time_minutes,
            "is_critical": self.entry.is_critical,
            "intervention_matched": self.intervention_matched,
            "minutes_elapsed": self.minutes_elapsed,
            "vitals": self.vitals.to_dict(),
            "prompt_block": self.prompt_block,
        }


# --- 5. OUTPUT LAYER (Debriefing) ---

@dataclass(frozen=True)
class ChecklistResult:
    item_id: str
    label: str
    status: ChecklistStatus
    performed_at: Optional[int]
    target_minutes: Optional[int]
    reference: str
    weight: float


@dataclass(frozen=True)
class ProtocolEvaluation:
    protocol_name: str
    results: Tuple[ChecklistResult, ...]
    adherence_score: float             # 0.0 - 10.0

    def to_dict(self) -> dict:
        return {
            "protocol_name": self.protocol_name,
            "adherence_score": self.adherence_score,
            "results": [
                {**asdict(r), "status": r.status.value} for r in self.results
            ],
        }


# --- 6. CASE GENERATION ---

@dataclass(frozen=True)
class PatientProfile:
    age: int
    sex: str                           # 'M' or 'F'
    comorbidities: Tuple[Comorbidity, ...]
    severity: Severity

    def to_dict(self) -> dict:
        return {
            "age": self.age,
            "sex": self.sex,
            "comorbidities": [c.value for c in self.comorbidities],
            "severity": self.severity.value,
        }


@dataclass(frozen=True)
class GeneratedCase:
    template_id: str
    template_name: str
    specialty: str
    patient: PatientProfile
    initial_vitals: Vitals
    scenario_prompt: str               # Goes into 'caso_especifico' verbatim

    def to_dict(self) -> dict:
        return {
            "template_id": self.template_id,
            "template_name": self.template_name,
            "specialty": self.specialty,
            "patient": self.patient.to_dict(),
            "initial_vitals": self.initial_vitals.to_dict(),
            "scenario_prompt": self.scenario_prompt,
        }
