"""
MedSim: Core Physiology Engine
==============================
The deterministic state machine that owns the patient's vitals.
It applies scripted intervention effects, degrades vitals over game time
according to the acuity label, and applies recurring penalties for
unmitigated conditions detected in the narrative.

The narrative generator never invents numbers: it receives `to_prompt_block()`
as ground truth every turn.
"""

import logging
import math
from dataclasses import replace
from typing import Dict, List, Optional, Set

# Import Data Models & Enums
from models import (
    Vitals,
    VitalsDelta,
    PatientStatus,
    Intervention,
    ClinicalCondition,
    ActionTimelineEntry,
    normalize_text,
)

# Import Clinical Constants & Catalogs
from constants import (
    SIMULATION_CONSTANTS,
    CLAMP_LIMITS,
    DEGRADATION_PROFILES,
    INTERVENTION_LIBRARY,
    CONDITION_LIBRARY,
)

logger = logging.getLogger(__name__)


def _round_half_up(value: float, digits: int = 0) -> float:
    # round() in Python is banker's rounding; vitals use schoolbook rounding
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def clamp_vitals(vitals: Vitals) -> Vitals:
    """
    Applies the physiological clamp to every field.
    Integer fields -> nearest whole number. Temperature -> one decimal.
    Total function: never fails.
    """
    values = {}
    for name, (low, high) in CLAMP_LIMITS.RANGES.items():
        raw = getattr(vitals, name)
        bounded = min(high, max(low, raw))
        if name in CLAMP_LIMITS.INTEGER_FIELDS:
            values[name] = int(_round_half_up(bounded))
        else:
            values[name] = _round_half_up(bounded, 1)
    return Vitals(**values)


def _contains_any(normalized_text: str, keywords) -> bool:
    return any(normalize_text(kw) in normalized_text for kw in keywords)


def match_interventions(action_text: str) -> List[Intervention]:
    """
    Diagnostic view: every catalog entry the text matches, in priority order.
    The engine itself only ever uses the first one.
    """
    norm = normalize_text(action_text)
    return [
        key for key, effect in INTERVENTION_LIBRARY.EFFECTS.items()
        if _contains_any(norm, effect.keywords)
    ]


def match_intervention(action_text: str) -> Optional[Intervention]:
    """First match wins."""
    norm = normalize_text(action_text)
    for key, effect in INTERVENTION_LIBRARY.EFFECTS.items():
        if _contains_any(norm, effect.keywords):
            return key
    return None


def find_critical_actions(action_text: str) -> List[str]:
    norm = normalize_text(action_text)
    return [name for name in INTERVENTION_LIBRARY.CRITICAL_ACTIONS if normalize_text(name) in norm]


def time_cost_for(action_text: str) -> int:
    """
    Minutes of game time this action consumes.
    Intervention catalog first, then diagnostics, then the default.
    """
    matched = match_intervention(action_text)
    if matched is not None:
        return INTERVENTION_LIBRARY.get(matched).time_cost_minutes

    norm = normalize_text(action_text)
    for keywords, minutes in INTERVENTION_LIBRARY.DIAGNOSTIC_TIME_COSTS:
        if _contains_any(norm, keywords):
            return minutes
    return SIMULATION_CONSTANTS.DEFAULT_TIME_COST_MINUTES


def detect_conditions(narrative_text: str) -> List[ClinicalCondition]:
    norm = normalize_text(narrative_text)
    return [
        condition for condition, rule in CONDITION_LIBRARY.RULES.items()
        if _contains_any(norm, rule.keywords)
    ]


class PhysiologyEngine:
    """
    The Numeric State Machine.
    One instance per game session. Not thread-safe: callers serialize turns.
    """

    def __init__(self, seed_vitals: Optional[dict] = None):
        self.reset(seed_vitals)

    def reset(self, seed_vitals: Optional[dict] = None) -> None:
        """
        Clears clock, timeline, applied interventions and conditions.
        Vitals = defaults overridden by any seed values, clamped.
        """
        if isinstance(seed_vitals, Vitals):
            seed_vitals = seed_vitals.to_dict()
        self._vitals: Vitals = clamp_vitals(Vitals.from_partial(seed_vitals))
        self._game_time_minutes: int = 0
        self._timeline: List[ActionTimelineEntry] = []
        self._applied_interventions: Set[str] = set()
        self._active_conditions: List[ClinicalCondition] = []
        logger.debug(f"Engine reset: {self._vitals}")

    # --- 1. NARRATIVE FEEDBACK ---

    def set_conditions_from_narrative(self, narrative_text: str) -> List[ClinicalCondition]:
        """
        Replaces (never merges) the active conditions. Call before tick()
        whenever a new narrative arrives, otherwise penalties use stale data.
        """
        self._active_conditions = detect_conditions(narrative_text or "")
        logger.debug(f"Active conditions: {[c.value for c in self._active_conditions]}")
        return list(self._active_conditions)

    def is_mitigated(self, condition: ClinicalCondition) -> bool:
        rule = CONDITION_LIBRARY.get(condition)
        return any(key in self._applied_interventions for key in rule.mitigated_by)

    # --- 2. TIME ---

    def tick(self, minutes: int, patient_status) -> None:
        """
        Advances the game clock.
        (a) acuity drift x minutes, clamped
        (b) clock += minutes
        (c) each active, unmitigated condition: floor(minutes / interval) penalties, clamped
        """
        minutes = max(0, int(minutes))
        status = PatientStatus.from_label(patient_status)

        # A. Acuity drift
        profile = DEGRADATION_PROFILES.get(status)
        self._vitals = clamp_vitals(self._vitals.plus(profile, minutes))

        # B. Clock
        self._game_time_minutes += minutes

        # C. Condition penalties
        for condition in self._active_conditions:
            if self.is_mitigated(condition):
                continue
            rule = CONDITION_LIBRARY.get(condition)
            applications = minutes // rule.interval_minutes
            if applications <= 0:
                continue
            self._vitals = clamp_vitals(self._vitals.plus(rule.penalty, applications))
            logger.debug(f"Penalty {condition.value} x{applications} at T={self._game_time_minutes}min")

        logger.debug(f"Tick {minutes}min ({status.value}) -> {self._vitals}")

    # --- 3. INTERVENTIONS ---

    def apply_intervention(self, action_text: str) -> bool:
        """
        Applies the fixed delta of the first catalog match (not scaled by time).
        The critical-action set is scanned regardless of the match.
        Returns True if a catalog entry matched.
        """
        for name in find_critical_actions(action_text or ""):
            self._applied_interventions.add(normalize_text(name))

        matched = match_intervention(action_text or "")
        if matched is None:
            logger.debug(f"No intervention matched: '{action_text}'")
            return False

        effect = INTERVENTION_LIBRARY.get(matched)
        self._vitals = clamp_vitals(self._vitals.plus(effect.delta))
        self._applied_interventions.add(matched.value)
        logger.debug(f"Intervention '{matched.value}' applied -> {self._vitals}")
        return True

    def time_cost_for(self, action_text: str) -> int:
        return time_cost_for(action_text or "")

    def log_action(self, action_text: str, is_critical: Optional[bool] = None) -> ActionTimelineEntry:
        """Appends to the timeline at the current clock value."""
        if is_critical is None:
            is_critical = bool(find_critical_actions(action_text or ""))
        entry = ActionTimelineEntry(
            action_text=action_text or "",
            game_time_minutes=self._game_time_minutes,
            is_critical=bool(is_critical),
        )
        self._timeline.append(entry)
        return entry

    # --- 4. SNAPSHOTS ---

    def get_vitals(self) -> Vitals:
        return replace(self._vitals)

    def get_game_time_minutes(self) -> int:
        return self._game_time_minutes

    def get_formatted_time(self) -> str:
        return format_game_time(self._game_time_minutes)

    def get_action_timeline(self) -> List[ActionTimelineEntry]:
        return list(self._timeline)

    def get_applied_interventions(self) -> Set[str]:
        return set(self._applied_interventions)

    def get_active_conditions(self) -> List[ClinicalCondition]:
        return list(self._active_conditions)

    def to_prompt_block(self) -> str:
        """Ground-truth block for the next narrative call. Shape is a contract."""
        v = self._vitals
        return "\n".join([
            "[VITAIS CALCULADOS PELO MOTOR FISIOLÓGICO - USE ESTES VALORES EXATOS]",
            f"FC: {v.heart_rate} bpm",
            f"PA: {v.systolic_bp}/{v.diastolic_bp} mmHg",
            f"SpO2: {v.sp_o2_percent}%",
            f"FR: {v.respiratory_rate_bpm} rpm",
            f"Temp: {v.temp_celsius:.1f}°C",
            f"Tempo de jogo: {self._game_time_minutes} min ({self.get_formatted_time()})",
        ])

    def to_debriefing_timeline(self) -> str:
        lines = ["[LINHA DO TEMPO DAS AÇÕES]"]
        if not self._timeline:
            lines.append("Nenhuma ação registrada.")
            return "\n".join(lines)
        for entry in self._timeline:
            icon = "🚨" if entry.is_critical else "▫️"
            suffix = " (CRÍTICA)" if entry.is_critical else ""
            lines.append(f"{icon} [{format_game_time(entry.game_time_minutes)}] {entry.action_text}{suffix}")
        return "\n".join(lines)

    def snapshot(self) -> Dict:
        return {
            "vitals": self._vitals.to_dict(),
            "game_time_minutes": self._game_time_minutes,
            "formatted_time": self.get_formatted_time(),
            "applied_interventions": sorted(self._applied_interventions),
            "active_conditions": [c.value for c in self._active_conditions],
            "timeline": [
                {
                    "action_text": e.action_text,
                    "game_time_minutes": e.game_time_minutes,
                    "is_critical": e.is_critical,
                }
                for e in self._timeline
            ],
        }


def format_game_time(minutes: float) -> str:
    total = int(_round_half_up(max(0, minutes)))
    return f"{total // 60:02d}:{total % 60:02d}"
