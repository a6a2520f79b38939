"""
MedSim: Dynamic Case Generator
==============================
Randomized clinical case templates. Each template carries baseline vitals and
a scenario builder; the generator draws a patient profile (age, sex,
comorbidities, severity), shifts the baseline accordingly and renders the
scenario text that seeds the narrative generator.

All randomness flows through an injectable `random.Random` so cases are
reproducible under a seed.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

from models import (
    Comorbidity,
    GeneratedCase,
    PatientProfile,
    Severity,
    Vitals,
)
from core_physics import clamp_vitals

logger = logging.getLogger(__name__)

_DEFAULT_RNG = random.Random()


# --- 1. PROFILE CONSTANTS ---

class PROFILE_LIMITS:
    AGE_RANGE = (20, 90)
    YOUNG_HEALTHY_AGE = 35        # < 35: 50% chance of no comorbidities
    YOUNG_HEALTHY_CHANCE = 0.5
    ADULT_AGE = 50                # < 50: 30% healthy, else 1-2 comorbidities
    ADULT_HEALTHY_CHANCE = 0.3
    ELDERLY_AGE = 70              # > 70: vitals shift
    YOUNG_AGE = 30                # < 30: vitals shift

    ALL_COMORBIDITIES = (
        Comorbidity.DM2, Comorbidity.HAS, Comorbidity.DPOC, Comorbidity.ICC,
        Comorbidity.IRC, Comorbidity.OBESIDADE, Comorbidity.TABAGISMO,
    )

    # Presentation limits applied before the engine clamp
    DISPLAY_RANGES = {
        "sp_o2_percent": (60, 99),
        "heart_rate": (40, 180),
        "systolic_bp": (60, 220),
        "diastolic_bp": (30, 140),
        "respiratory_rate_bpm": (10, 40),
    }


COMORBIDITY_DISPLAY = {
    Comorbidity.DM2: "Diabetes Mellitus tipo 2",
    Comorbidity.HAS: "Hipertensão Arterial Sistêmica",
    Comorbidity.DPOC: "Doença Pulmonar Obstrutiva Crônica",
    Comorbidity.ICC: "Insuficiência Cardíaca Congestiva",
    Comorbidity.IRC: "Insuficiência Renal Crônica",
    Comorbidity.OBESIDADE: "Obesidade (IMC > 30)",
    Comorbidity.TABAGISMO: "Tabagismo ativo (20 maços-ano)",
    Comorbidity.HIGIDO: "Sem comorbidades conhecidas",
}

# Per comorbidity: field -> inclusive (low, high) additive range
COMORBIDITY_ADJUSTMENTS: Dict[Comorbidity, Dict[str, Tuple[int, int]]] = {
    Comorbidity.DPOC: {"sp_o2_percent": (-6, -3), "respiratory_rate_bpm": (2, 4)},
    Comorbidity.HAS: {"systolic_bp": (15, 30), "diastolic_bp": (10, 15)},
    Comorbidity.DM2: {"heart_rate": (0, 5)},
    Comorbidity.ICC: {"heart_rate": (5, 15), "sp_o2_percent": (-4, -2), "respiratory_rate_bpm": (2, 4)},
    Comorbidity.IRC: {"systolic_bp": (5, 15)},
    Comorbidity.OBESIDADE: {"sp_o2_percent": (-3, -1), "respiratory_rate_bpm": (1, 2)},
    Comorbidity.TABAGISMO: {"sp_o2_percent": (-2, -1)},
    Comorbidity.HIGIDO: {},
}

SEVERITY_ADJUSTMENTS: Dict[Severity, Dict[str, Tuple[int, int]]] = {
    Severity.LEVE: {},
    Severity.MODERADA: {
        "heart_rate": (5, 15), "systolic_bp": (-10, -5),
        "sp_o2_percent": (-3, -1), "respiratory_rate_bpm": (2, 4),
    },
    Severity.GRAVE: {
        "heart_rate": (15, 35), "systolic_bp": (-30, -15),
        "sp_o2_percent": (-8, -4), "respiratory_rate_bpm": (4, 8),
    },
}


def format_comorbidities(comorbidities) -> str:
    return ", ".join(COMORBIDITY_DISPLAY[c] for c in comorbidities)


def _sex_label(profile: PatientProfile) -> str:
    return "masculino" if profile.sex == "M" else "feminino"


# --- 2. PATIENT PROFILE ---

def generate_patient_profile(rng: Optional[random.Random] = None) -> PatientProfile:
    rng = rng or _DEFAULT_RNG
    age = rng.randint(*PROFILE_LIMITS.AGE_RANGE)
    sex = rng.choice(("M", "F"))
    severity = rng.choice(tuple(Severity))

    # Younger patients are more likely to be healthy
    if age < PROFILE_LIMITS.YOUNG_HEALTHY_AGE and rng.random() < PROFILE_LIMITS.YOUNG_HEALTHY_CHANCE:
        comorbidities = (Comorbidity.HIGIDO,)
    elif age < PROFILE_LIMITS.ADULT_AGE:
        if rng.random() < PROFILE_LIMITS.ADULT_HEALTHY_CHANCE:
            comorbidities = (Comorbidity.HIGIDO,)
        else:
            comorbidities = tuple(rng.sample(PROFILE_LIMITS.ALL_COMORBIDITIES, rng.randint(1, 2)))
    else:
        comorbidities = tuple(rng.sample(PROFILE_LIMITS.ALL_COMORBIDITIES, rng.randint(1, 3)))

    return PatientProfile(age=age, sex=sex, comorbidities=comorbidities, severity=severity)


# --- 3. VITALS ADJUSTMENT ---

def _shift(values: dict, ranges: Dict[str, Tuple[int, int]], rng: random.Random) -> None:
    for name, (low, high) in ranges.items():
        values[name] += rng.randint(low, high)


def adjust_vitals_for_profile(baseline: Union[Vitals, dict, None],
                              profile: PatientProfile,
                              rng: Optional[random.Random] = None) -> Vitals:
    """
    Shifts template baseline vitals by age band, comorbidities and severity.
    Result is within the display ranges and the engine clamp.
    """
    rng = rng or _DEFAULT_RNG
    if isinstance(baseline, Vitals):
        baseline = baseline.to_dict()
    values = Vitals.from_partial(baseline).to_dict()

    # A. Age
    if profile.age > PROFILE_LIMITS.ELDERLY_AGE:
        values["heart_rate"] += rng.randint(-5, 5)
        values["systolic_bp"] += rng.randint(10, 25)
        values["sp_o2_percent"] -= rng.randint(1, 3)
    elif profile.age < PROFILE_LIMITS.YOUNG_AGE:
        values["heart_rate"] -= rng.randint(5, 10)
        values["sp_o2_percent"] = min(99, values["sp_o2_percent"] + 1)

    # B. Comorbidities
    for comorbidity in profile.comorbidities:
        _shift(values, COMORBIDITY_ADJUSTMENTS.get(comorbidity, {}), rng)

    # C. Severity
    _shift(values, SEVERITY_ADJUSTMENTS.get(profile.severity, {}), rng)

    # D. Display clamp, then the engine clamp
    for name, (low, high) in PROFILE_LIMITS.DISPLAY_RANGES.items():
        values[name] = max(low, min(high, values[name]))

    return clamp_vitals(Vitals(**values))


# --- 4. TEMPLATES ---

@dataclass(frozen=True)
class CaseTemplate:
    id: str
    name: str
    specialty: str
    match_specialties: Tuple[str, ...]   # Requested specialties that trigger this template
    base_vitals: Dict[str, float]
    build_scenario: Callable[[PatientProfile, random.Random], str]

    def matches(self, specialty: str) -> bool:
        requested = (specialty or "").lower()
        return any(s.lower() in requested for s in self.match_specialties)


def _by_severity(profile: PatientProfile, grave: str, moderada: str, leve: str) -> str:
    if profile.severity == Severity.GRAVE:
        return grave
    if profile.severity == Severity.MODERADA:
        return moderada
    return leve


def _stemi_scenario(p: PatientProfile, rng: random.Random) -> str:
    pain = _by_severity(
        p,
        "dor torácica intensa, opressiva, irradiando para membro superior esquerdo e mandíbula, "
        "sudorese profusa, náuseas e sensação de morte iminente",
        "dor torácica em aperto há 2 horas, irradiando para ombro esquerdo, com náuseas leves",
        "desconforto torácico retroesternal há 4 horas, em aperto, sem irradiação clara",
    )
    onset = _by_severity(p, "há 1 hora", "há 3 horas", "há 6 horas")
    return (
        f"Paciente {_sex_label(p)}, {p.age} anos, dá entrada na emergência com {pain}, iniciada {onset}. "
        f"Antecedentes: {format_comorbidities(p.comorbidities)}. Gravidade do quadro: {p.severity.value}. "
        f"Gere um caso de IAM com Supra de ST adequado a este perfil."
    )


def _pneumonia_scenario(p: PatientProfile, rng: random.Random) -> str:
    onset = _by_severity(
        p,
        "dispneia intensa, tosse produtiva com escarro purulento, febre alta (39.5°C) há 2 dias, confusão mental",
        "tosse produtiva há 5 dias, febre de 38.5°C, dispneia aos esforços moderados",
        "tosse com expectoração amarelada há 7 dias, febre baixa intermitente, sem dispneia em repouso",
    )
    return (
        f"Paciente {_sex_label(p)}, {p.age} anos, chega à emergência com {onset}. "
        f"Antecedentes: {format_comorbidities(p.comorbidities)}. Gravidade do quadro: {p.severity.value}. "
        f"Gere um caso de Pneumonia Adquirida na Comunidade adequado a este perfil."
    )


def _sepsis_scenario(p: PatientProfile, rng: random.Random) -> str:
    focus = rng.choice(("urinário", "pulmonar", "abdominal", "cutâneo"))
    desc = _by_severity(
        p,
        f"quadro de choque séptico com hipotensão refratária, alteração do nível de consciência, "
        f"lactato elevado, foco {focus}",
        f"sepse com taquicardia, febre alta, hipotensão leve, foco provável {focus}",
        f"sinais de SIRS com foco infeccioso {focus}, sem disfunção orgânica evidente",
    )
    return (
        f"Paciente {_sex_label(p)}, {p.age} anos, trazido à emergência com {desc}. "
        f"Antecedentes: {format_comorbidities(p.comorbidities)}. Gravidade do quadro: {p.severity.value}. "
        f"Gere um caso de Sepse adequado a este perfil."
    )


def _asthma_scenario(p: PatientProfile, rng: random.Random) -> str:
    trigger = rng.choice(("infecção viral de vias aéreas", "exposição a poeira", "frio intenso", "suspensão da medicação"))
    desc = _by_severity(
        p,
        "dispneia intensa com fala entrecortada, uso de musculatura acessória, sibilância difusa e sonolência",
        "dispneia progressiva há 12 horas, sibilância audível, dificuldade para completar frases",
        "chiado no peito e tosse seca há 1 dia, com melhora parcial após broncodilatador domiciliar",
    )
    return (
        f"Paciente {_sex_label(p)}, {p.age} anos, asmático, chega à emergência com {desc}, "
        f"após {trigger}. Antecedentes: {format_comorbidities(p.comorbidities)}. "
        f"Gravidade do quadro: {p.severity.value}. "
        f"Gere um caso de Asma grave com Insuficiência Respiratória Aguda adequado a este perfil."
    )


def _trauma_scenario(p: PatientProfile, rng: random.Random) -> str:
    mechanism = rng.choice(("colisão moto x carro", "queda de altura", "atropelamento", "capotamento de veículo"))
    desc = _by_severity(
        p,
        "palidez, extremidades frias, rebaixamento do nível de consciência e abdome distendido",
        "dor abdominal difusa, taquicardia e escoriações em tórax",
        "dor em hemitórax direito e escoriações em membros, consciente e orientado",
    )
    return (
        f"Paciente {_sex_label(p)}, {p.age} anos, trazido pelo resgate após {mechanism}, com {desc}. "
        f"Antecedentes: {format_comorbidities(p.comorbidities)}. Gravidade do quadro: {p.severity.value}. "
        f"Gere um caso de Politrauma com choque hemorrágico adequado a este perfil."
    )


TEMPLATES = (
    CaseTemplate(
        id="iam_stemi",
        name="Infarto Agudo do Miocárdio (STEMI)",
        specialty="Cardiologia",
        match_specialties=("Cardiologia", "Trauma / Emergência"),
        base_vitals={"heart_rate": 95, "systolic_bp": 135, "diastolic_bp": 85,
                     "sp_o2_percent": 95, "respiratory_rate_bpm": 20, "temp_celsius": 36.8},
        build_scenario=_stemi_scenario,
    ),
    CaseTemplate(
        id="pneumonia_cap",
        name="Pneumonia Adquirida na Comunidade",
        specialty="Pneumologia",
        match_specialties=("Pneumologia", "Infectologia", "Trauma / Emergência"),
        base_vitals={"heart_rate": 100, "systolic_bp": 115, "diastolic_bp": 70,
                     "sp_o2_percent": 91, "respiratory_rate_bpm": 24, "temp_celsius": 38.5},
        build_scenario=_pneumonia_scenario,
    ),
    CaseTemplate(
        id="sepse",
        name="Sepse / Choque Séptico",
        specialty="Infectologia",
        match_specialties=("Infectologia", "Trauma / Emergência", "Pneumologia"),
        base_vitals={"heart_rate": 110, "systolic_bp": 95, "diastolic_bp": 55,
                     "sp_o2_percent": 92, "respiratory_rate_bpm": 26, "temp_celsius": 38.8},
        build_scenario=_sepsis_scenario,
    ),
    CaseTemplate(
        id="asma_grave",
        name="Asma Grave / Insuficiência Respiratória Aguda",
        specialty="Pneumologia",
        match_specialties=("Pneumologia", "Trauma / Emergência"),
        base_vitals={"heart_rate": 115, "systolic_bp": 130, "diastolic_bp": 80,
                     "sp_o2_percent": 89, "respiratory_rate_bpm": 30, "temp_celsius": 36.9},
        build_scenario=_asthma_scenario,
    ),
    CaseTemplate(
        id="politrauma",
        name="Politrauma / Choque Hemorrágico",
        specialty="Trauma / Emergência",
        match_specialties=("Trauma / Emergência", "Cirurgia Geral"),
        base_vitals={"heart_rate": 120, "systolic_bp": 95, "diastolic_bp": 60,
                     "sp_o2_percent": 94, "respiratory_rate_bpm": 26, "temp_celsius": 36.0},
        build_scenario=_trauma_scenario,
    ),
)


# --- 5. GENERATOR ---

def generate_case(specialty: str, rng: Optional[random.Random] = None) -> Optional[GeneratedCase]:
    """
    Uniform pick among the templates matching `specialty`.
    None when nothing matches (caller falls back to a free-form case).
    """
    rng = rng or _DEFAULT_RNG
    candidates = [t for t in TEMPLATES if t.matches(specialty)]
    if not candidates:
        logger.info(f"No case template for specialty '{specialty}'")
        return None

    template = rng.choice(candidates)
    patient = generate_patient_profile(rng)
    initial_vitals = adjust_vitals_for_profile(template.base_vitals, patient, rng)
    scenario_prompt = template.build_scenario(patient, rng)

    logger.info(
        f"Generated case '{template.id}': {patient.sex}, {patient.age}y, "
        f"{patient.severity.value}, {[c.value for c in patient.comorbidities]}"
    )
    return GeneratedCase(
        template_id=template.id,
        template_name=template.name,
        specialty=template.specialty,
        patient=patient,
        initial_vitals=initial_vitals,
        scenario_prompt=scenario_prompt,
    )


def get_available_templates() -> List[Dict[str, str]]:
    return [{"id": t.id, "name": t.name, "specialty": t.specialty} for t in TEMPLATES]
