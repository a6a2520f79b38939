from models import (
    Intervention,
    InterventionEffect,
    ClinicalCondition,
    ConditionRule,
    PatientStatus,
    VitalsDelta,
)

VERSION = "1.0.0"


class SIMULATION_CONSTANTS:
    DEFAULT_TIME_COST_MINUTES = 5    # Unmatched actions
    TIMEOUT_MINUTES = 5              # Player froze (SYSTEM_TIMEOUT)
    LATE_CREDIT_FACTOR = 0.5         # Late checklist items earn half weight
    MAX_ADHERENCE_SCORE = 10.0
    TIMEOUT_ACTION_TEXT = "SYSTEM_TIMEOUT: tempo de resposta esgotado"
    DIFFICULTIES = ("ESTUDANTE", "RESIDENTE", "ESPECIALISTA")
    SESSION_IDLE_TTL_SECONDS = 3600  # Registry drops sessions untouched for this long


class CLAMP_LIMITS:
    # Field: (min, max)
    RANGES = {
        "heart_rate": (0, 250),
        "systolic_bp": (0, 250),
        "diastolic_bp": (0, 180),
        "sp_o2_percent": (0, 99),
        "respiratory_rate_bpm": (0, 60),
        "temp_celsius": (30.0, 42.0),
    }
    INTEGER_FIELDS = (
        "heart_rate", "systolic_bp", "diastolic_bp",
        "sp_o2_percent", "respiratory_rate_bpm",
    )


class DEGRADATION_PROFILES:
    """
    Per-minute drift keyed by acuity. The engine never decides acuity;
    the narrative generator does, and the caller feeds it into tick().
    """
    PER_MINUTE = {
        PatientStatus.ESTAVEL: VitalsDelta(),
        PatientStatus.INSTAVEL: VitalsDelta(
            heart_rate=2, systolic_bp=-2, diastolic_bp=-1,
            sp_o2_percent=-0.5, respiratory_rate_bpm=1, temp_celsius=0.05,
        ),
        PatientStatus.CRITICO: VitalsDelta(
            heart_rate=5, systolic_bp=-5, diastolic_bp=-3,
            sp_o2_percent=-1.5, respiratory_rate_bpm=2, temp_celsius=0.1,
        ),
        PatientStatus.OBITO: VitalsDelta(temp_celsius=-0.2),  # Cooling only
        PatientStatus.CURADO: VitalsDelta(),
    }

    @staticmethod
    def get(status: PatientStatus) -> VitalsDelta:
        return DEGRADATION_PROFILES.PER_MINUTE.get(
            status, DEGRADATION_PROFILES.PER_MINUTE[PatientStatus.ESTAVEL]
        )


class INTERVENTION_LIBRARY:
    """
    The Pharmacopoeia of Actions.
    ORDER IS A PRIORITY LIST: the first entry whose alias is contained in the
    action text wins. 'noradrenalina' contains 'adrenalina', and ADRENALINA is
    declared first, so it wins. Do not reorder without updating the tests.
    """
    EFFECTS = {
        # Medications
        Intervention.EPINEFRINA: InterventionEffect(
            keywords=("epinefrina",),
            delta=VitalsDelta(heart_rate=20, systolic_bp=15, diastolic_bp=10),
            time_cost_minutes=2,
        ),
        Intervention.ADRENALINA: InterventionEffect(
            keywords=("adrenalina",),
            delta=VitalsDelta(heart_rate=20, systolic_bp=15, diastolic_bp=10),
            time_cost_minutes=2,
        ),
        Intervention.ATROPINA: InterventionEffect(
            keywords=("atropina",),
            delta=VitalsDelta(heart_rate=15),
            time_cost_minutes=2,
        ),
        Intervention.AMIODARONA: InterventionEffect(
            keywords=("amiodarona",),
            delta=VitalsDelta(heart_rate=-15),
            time_cost_minutes=10,  # Infused over 10 min
        ),
        Intervention.NORADRENALINA: InterventionEffect(
            keywords=("noradrenalina",),
            delta=VitalsDelta(systolic_bp=20, diastolic_bp=12, heart_rate=5),
            time_cost_minutes=5,
        ),
        Intervention.DOBUTAMINA: InterventionEffect(
            keywords=("dobutamina",),
            delta=VitalsDelta(heart_rate=10, systolic_bp=10),
            time_cost_minutes=5,
        ),
        Intervention.NITROPRUSSIATO: InterventionEffect(
            keywords=("nitroprussiato",),
            delta=VitalsDelta(systolic_bp=-25, diastolic_bp=-15),
            time_cost_minutes=5,
        ),
        Intervention.FUROSEMIDA: InterventionEffect(
            keywords=("furosemida",),
            delta=VitalsDelta(systolic_bp=-10, diastolic_bp=-5),
            time_cost_minutes=2,
        ),
        Intervention.DIPIRONA: InterventionEffect(
            keywords=("dipirona",),
            delta=VitalsDelta(temp_celsius=-1.0),
            time_cost_minutes=2,
        ),
        Intervention.PARACETAMOL: InterventionEffect(
            keywords=("paracetamol",),
            delta=VitalsDelta(temp_celsius=-0.8),
            time_cost_minutes=2,
        ),
        Intervention.MIDAZOLAM: InterventionEffect(
            keywords=("midazolam",),
            delta=VitalsDelta(respiratory_rate_bpm=-3, heart_rate=-5),
            time_cost_minutes=2,
        ),
        Intervention.FENTANIL: InterventionEffect(
            keywords=("fentanil",),
            delta=VitalsDelta(respiratory_rate_bpm=-4, heart_rate=-5, systolic_bp=-10),
            time_cost_minutes=2,
        ),
        Intervention.MORFINA: InterventionEffect(
            keywords=("morfina",),
            delta=VitalsDelta(respiratory_rate_bpm=-3, heart_rate=-5, systolic_bp=-8),
            time_cost_minutes=2,
        ),
        Intervention.SALBUTAMOL: InterventionEffect(
            keywords=("salbutamol",),
            delta=VitalsDelta(respiratory_rate_bpm=-4, sp_o2_percent=3, heart_rate=10),
            time_cost_minutes=5,  # Nebulization
        ),
        Intervention.HIDROCORTISONA: InterventionEffect(
            keywords=("hidrocortisona",),
            delta=VitalsDelta(sp_o2_percent=2),
            time_cost_minutes=2,
        ),

        # Procedures
        Intervention.O2_SUPLEMENTAR: InterventionEffect(
            keywords=("o2_suplementar",),
            delta=VitalsDelta(sp_o2_percent=5),
            time_cost_minutes=2,
        ),
        Intervention.OXIGENIO: InterventionEffect(
            keywords=("oxigenio",),
            delta=VitalsDelta(sp_o2_percent=5),
            time_cost_minutes=2,
        ),
        Intervention.VENTILACAO_MECANICA: InterventionEffect(
            keywords=("ventilacao_mecanica",),
            delta=VitalsDelta(sp_o2_percent=8, respiratory_rate_bpm=-6),
            time_cost_minutes=10,
        ),
        Intervention.INTUBACAO: InterventionEffect(
            keywords=("intubacao",),
            delta=VitalsDelta(sp_o2_percent=10, respiratory_rate_bpm=-4),
            time_cost_minutes=10,
        ),
        Intervention.ACESSO_VENOSO: InterventionEffect(
            keywords=("acesso_venoso",),
            time_cost_minutes=5,  # No vitals effect, still clinically relevant
        ),
        Intervention.DESFIBRILACAO: InterventionEffect(
            keywords=("desfibrilacao",),
            delta=VitalsDelta(heart_rate=40, systolic_bp=10),
            time_cost_minutes=1,
        ),
        Intervention.CARDIOVERSAO: InterventionEffect(
            keywords=("cardioversao",),
            delta=VitalsDelta(heart_rate=-30, systolic_bp=5),
            time_cost_minutes=3,
        ),
        Intervention.DRENAGEM_TORAX: InterventionEffect(
            keywords=("drenagem_torax",),
            delta=VitalsDelta(sp_o2_percent=6, respiratory_rate_bpm=-3),
            time_cost_minutes=15,
        ),
        Intervention.REPOSICAO_VOLEMICA: InterventionEffect(
            keywords=("reposicao_volemica",),
            delta=VitalsDelta(systolic_bp=15, diastolic_bp=10, heart_rate=-5),
            time_cost_minutes=10,
        ),
        Intervention.CRISTALOIDE: InterventionEffect(
            keywords=("cristaloide",),
            delta=VitalsDelta(systolic_bp=12, diastolic_bp=8, heart_rate=-5),
            time_cost_minutes=10,
        ),
        Intervention.HEMODERIVADO: InterventionEffect(
            keywords=("hemoderivado",),
            delta=VitalsDelta(systolic_bp=18, diastolic_bp=12, heart_rate=-8),
            time_cost_minutes=15,
        ),
        Intervention.RCP: InterventionEffect(
            keywords=("rcp",),
            delta=VitalsDelta(heart_rate=30, systolic_bp=20),
            time_cost_minutes=2,  # One cycle
        ),
        Intervention.MASSAGEM_CARDIACA: InterventionEffect(
            keywords=("massagem_cardiaca",),
            delta=VitalsDelta(heart_rate=30, systolic_bp=20),
            time_cost_minutes=2,
        ),

        # Disease-modifying drugs/procedures (matched after the legacy list)
        Intervention.ANTIBIOTICO: InterventionEffect(
            keywords=(
                "antibiotico", "ceftriaxona", "piperacilina", "tazobactam",
                "meropenem", "vancomicina", "cefepime", "ampicilina",
            ),
            time_cost_minutes=5,
        ),
        Intervention.ANTIAGREGANTE: InterventionEffect(
            keywords=("aas", "aspirina", "acido acetilsalicilico", "clopidogrel", "ticagrelor", "prasugrel"),
            time_cost_minutes=2,
        ),
        Intervention.ANTICOAGULANTE: InterventionEffect(
            keywords=("heparina", "enoxaparina"),
            time_cost_minutes=2,
        ),
        Intervention.REPERFUSAO: InterventionEffect(
            keywords=(
                "reperfusao", "cateterismo", "angioplastia", "trombolise",
                "trombolitico", "fibrinolitico", "alteplase", "tenecteplase",
            ),
            delta=VitalsDelta(heart_rate=-5, systolic_bp=5),
            time_cost_minutes=60,
        ),
    }

    # Exams and assessments: time only, no vitals effect. Checked after EFFECTS.
    DIAGNOSTIC_TIME_COSTS = (
        (("ecg", "eletrocardiograma"), 5),
        (("monitoriz", "oximetria"), 2),
        (("exame fisico", "abcde", "avaliacao primaria"), 3),
        (("gasometria",), 10),
        (("lactato",), 10),
        (("hemocultura", "cultura"), 10),
        (("hemograma", "troponina", "eletrolitos", "laboratorio"), 15),
        (("rx torax", "raio x", "radiografia"), 15),
        (("fast", "ultrassom"), 10),
        (("tomografia",), 30),
    )

    # Clinically significant names. Always scanned, with or without an effect match.
    CRITICAL_ACTIONS = (
        "epinefrina", "adrenalina", "atropina", "amiodarona", "noradrenalina",
        "desfibrilacao", "cardioversao", "rcp", "massagem_cardiaca",
        "intubacao", "ventilacao_mecanica", "drenagem_torax",
        "hemoderivado", "transfusao",
        "antibiotico", "ceftriaxona", "piperacilina", "meropenem", "vancomicina",
        "aas", "aspirina", "clopidogrel", "heparina",
        "cateterismo", "angioplastia", "trombolise",
        "ecg", "eletrocardiograma",
    )

    @staticmethod
    def get(intervention: Intervention) -> InterventionEffect:
        return INTERVENTION_LIBRARY.EFFECTS[intervention]


class CONDITION_LIBRARY:
    """
    Recurring penalties for syndromes detected in the narrative.
    A rule stops for good once any of its `mitigated_by` keys is applied.
    """
    RULES = {
        ClinicalCondition.SEPSE: ConditionRule(
            keywords=("sepse", "sepsis", "septico", "choque septico"),
            interval_minutes=15,
            penalty=VitalsDelta(heart_rate=3, systolic_bp=-4, diastolic_bp=-2, temp_celsius=0.2),
            mitigated_by=("antibiotico", "ceftriaxona", "piperacilina", "meropenem", "vancomicina"),
        ),
        ClinicalCondition.IAM: ConditionRule(
            keywords=("infarto", "iam", "stemi", "supra de st", "supradesnivelamento"),
            interval_minutes=10,
            penalty=VitalsDelta(heart_rate=2, systolic_bp=-3, diastolic_bp=-2, sp_o2_percent=-1),
            mitigated_by=("reperfusao", "cateterismo", "angioplastia", "trombolise"),
        ),
        ClinicalCondition.HEMORRAGIA: ConditionRule(
            keywords=("hemorragia", "hemorragico", "sangramento"),
            interval_minutes=10,
            penalty=VitalsDelta(heart_rate=4, systolic_bp=-5, diastolic_bp=-3),
            mitigated_by=("hemoderivado", "reposicao_volemica", "cristaloide"),
        ),
        ClinicalCondition.INSUFICIENCIA_RESPIRATORIA: ConditionRule(
            keywords=("insuficiencia respiratoria", "irpa", "broncoespasmo", "asma grave",
                      "crise asmatica", "mal asmatico", "hipoxemia"),
            interval_minutes=10,
            penalty=VitalsDelta(sp_o2_percent=-2, respiratory_rate_bpm=2, heart_rate=2),
            mitigated_by=("o2_suplementar", "oxigenio", "intubacao", "ventilacao_mecanica", "salbutamol"),
        ),
        ClinicalCondition.PNEUMOTORAX: ConditionRule(
            keywords=("pneumotorax",),
            interval_minutes=5,
            penalty=VitalsDelta(sp_o2_percent=-3, respiratory_rate_bpm=2, systolic_bp=-3),
            mitigated_by=("drenagem_torax",),
        ),
        ClinicalCondition.PCR: ConditionRule(
            # Bare "pcr" is also proteina C reativa in lab results
            keywords=("em pcr", "pcr em", "parada cardio", "parada cardiaca", "assistolia",
                      "fibrilacao ventricular", "atividade eletrica sem pulso"),
            interval_minutes=2,
            penalty=VitalsDelta(sp_o2_percent=-5, systolic_bp=-5),
            mitigated_by=("rcp", "massagem_cardiaca", "desfibrilacao"),
        ),
    }

    @staticmethod
    def get(condition: ClinicalCondition) -> ConditionRule:
        return CONDITION_LIBRARY.RULES[condition]
