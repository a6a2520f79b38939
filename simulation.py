"""
MedSim: Session Orchestration
=============================
One SimulationSession per game. It owns its PhysiologyEngine (there is no
global engine), runs the turn flow and produces the debriefing.

Turn flow:
    action -> apply_intervention -> tick(time cost, acuity) -> log_action
    -> prompt block goes to the narrative generator with the action
    -> returned narrative: set_conditions_from_narrative + acuity stored for the next tick
    -> terminal acuity (OBITO / CURADO): the protocol evaluator runs over the full timeline
"""

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Union

from models import (
    ActionOutcome,
    GeneratedCase,
    PatientStatus,
    ProtocolEvaluation,
    SessionEndedError,
    SessionNotFoundError,
)
from constants import SIMULATION_CONSTANTS
from core_physics import PhysiologyEngine
from case_generator import generate_case
from narrative import NarrativeTurn, parse_vitals_from_narrative
from protocols import detect_protocol, evaluate_protocol, evaluation_to_prompt_block

logger = logging.getLogger(__name__)


class SimulationSession:
    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex
        self.created_at = datetime.now()
        self.lock = threading.RLock()

        self.engine = PhysiologyEngine()
        self.specialty: Optional[str] = None
        self.difficulty: Optional[str] = None
        self.case: Optional[GeneratedCase] = None
        self.patient_status = PatientStatus.ESTAVEL
        self.narrative_history: List[str] = []
        self.last_turn: Optional[NarrativeTurn] = None
        self.evaluation: Optional[ProtocolEvaluation] = None
        self.debriefed = False

    # --- 1. LIFECYCLE ---

    def start(self, specialty: str, difficulty: str,
              seed_vitals: Optional[dict] = None,
              use_generated_case: bool = True,
              rng=None) -> Dict:
        """
        (Re)starts the game. A generated case seeds the vitals and the first
        narrative; explicit `seed_vitals` win over the case's vitals.
        """
        self.specialty = specialty
        self.difficulty = difficulty
        self.case = generate_case(specialty, rng) if use_generated_case else None

        vitals = self.case.initial_vitals.to_dict() if self.case else {}
        vitals.update(seed_vitals or {})
        self.engine = PhysiologyEngine(vitals)

        self.patient_status = PatientStatus.ESTAVEL
        self.narrative_history = []
        self.last_turn = None
        self.evaluation = None
        self.debriefed = False

        if self.case:
            # The scenario is the opening narrative: it sets the initial conditions
            self.narrative_history.append(self.case.scenario_prompt)
            self.engine.set_conditions_from_narrative(self.case.scenario_prompt)

        logger.info(
            f"Session {self.session_id} started: {specialty} / {difficulty}, "
            f"case={self.case.template_id if self.case else None}"
        )
        return self.start_payload()

    def start_payload(self) -> Dict[str, str]:
        """The START_GAME payload for the narrative generator."""
        payload = {
            "especialidade": self.specialty or "",
            "dificuldade": self.difficulty or "",
        }
        if self.case:
            payload["caso_especifico"] = self.case.scenario_prompt
        return payload

    @property
    def is_over(self) -> bool:
        return self.patient_status.is_terminal

    # --- 2. PLAYER TURNS ---

    def _ensure_active(self) -> None:
        if self.is_over:
            raise SessionEndedError(
                f"Session {self.session_id} has ended ({self.patient_status.value})"
            )

    def perform_action(self, action_text: str, is_critical: Optional[bool] = None) -> ActionOutcome:
        """
        Applies the action, advances the clock by its cost at the current acuity
        and logs it at the post-tick time. Not rolled back if the narrative call fails.
        """
        self._ensure_active()
        if not action_text or not action_text.strip():
            raise ValueError("Action text must not be empty")

        matched = self.engine.apply_intervention(action_text)
        minutes = self.engine.time_cost_for(action_text)
        self.engine.tick(minutes, self.patient_status)
        entry = self.engine.log_action(action_text, is_critical)

        logger.info(
            f"Session {self.session_id} T={entry.game_time_minutes}min: '{action_text}' "
            f"(matched={matched}, +{minutes}min)"
        )
        return ActionOutcome(
            entry=entry,
            intervention_matched=matched,
            minutes_elapsed=minutes,
            vitals=self.engine.get_vitals(),
            prompt_block=self.engine.to_prompt_block(),
        )

    def register_timeout(self) -> ActionOutcome:
        """The player froze: the patient keeps deteriorating for TIMEOUT_MINUTES."""
        self._ensure_active()
        minutes = SIMULATION_CONSTANTS.TIMEOUT_MINUTES
        self.engine.tick(minutes, self.patient_status)
        entry = self.engine.log_action(SIMULATION_CONSTANTS.TIMEOUT_ACTION_TEXT, is_critical=True)

        logger.warning(f"Session {self.session_id} timeout at T={entry.game_time_minutes}min")
        return ActionOutcome(
            entry=entry,
            intervention_matched=False,
            minutes_elapsed=minutes,
            vitals=self.engine.get_vitals(),
            prompt_block=self.engine.to_prompt_block(),
        )

    # --- 3. NARRATIVE FEEDBACK ---

    def ingest_narrative(self, turn_or_text: Union[NarrativeTurn, str],
                         status=None) -> Dict:
        """
        Feeds the generator's reply back into the engine: conditions are
        rescanned and the acuity label is kept for the next tick.
        An explicit `status` wins over the one inside the turn.
        A terminal acuity is final until start().
        """
        self._ensure_active()
        if isinstance(turn_or_text, NarrativeTurn):
            self.last_turn = turn_or_text
            text = turn_or_text.narrative_text
            if status is None:
                status = turn_or_text.patient_status
            reported = turn_or_text.reported_vitals()
        else:
            text = turn_or_text or ""
            reported = parse_vitals_from_narrative(text)

        conditions = self.engine.set_conditions_from_narrative(text)
        if text:
            self.narrative_history.append(text)
        if status is not None:
            self.patient_status = PatientStatus.from_label(status)

        divergent = self._divergent_vitals(reported)
        if divergent:
            logger.warning(f"Session {self.session_id}: narrative vitals diverge from engine: {divergent}")

        if self.is_over and not self.debriefed:
            logger.info(f"Session {self.session_id} ended with {self.patient_status.value}")
            self.debrief()

        return {
            "patient_status": self.patient_status.value,
            "active_conditions": [c.value for c in conditions],
            "divergent_vitals": divergent,
            "is_over": self.is_over,
        }

    def _divergent_vitals(self, reported: Dict[str, float]) -> Dict[str, Dict[str, float]]:
        vitals = self.engine.get_vitals().to_dict()
        return {
            name: {"reported": value, "engine": vitals[name]}
            for name, value in reported.items()
            if name in vitals and value != vitals[name]
        }

    # --- 4. DEBRIEFING ---

    def debrief(self) -> Dict:
        """
        Detects the protocol over the accumulated narrative and scores the
        timeline against it. Stored on the session; pure with respect to the engine.
        """
        protocol = detect_protocol("\n".join(self.narrative_history))
        self.evaluation = None
        checklist_block = ""
        if protocol is not None:
            self.evaluation = evaluate_protocol(
                protocol,
                self.engine.get_action_timeline(),
                self.engine.get_applied_interventions(),
            )
            checklist_block = evaluation_to_prompt_block(self.evaluation)
        else:
            logger.info(f"Session {self.session_id}: no protocol detected for debriefing")
        self.debriefed = True

        timeline_block = self.engine.to_debriefing_timeline()
        return {
            "session_id": self.session_id,
            "outcome": self.patient_status.value,
            "protocol": protocol.name if protocol else None,
            "evaluation": self.evaluation.to_dict() if self.evaluation else None,
            "timeline_block": timeline_block,
            "checklist_block": checklist_block,
            "prompt_block": "\n\n".join(b for b in (timeline_block, checklist_block) if b),
            "final_vitals": self.engine.get_vitals().to_dict(),
            "game_time_minutes": self.engine.get_game_time_minutes(),
        }

    def snapshot(self) -> Dict:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "specialty": self.specialty,
            "difficulty": self.difficulty,
            "patient_status": self.patient_status.value,
            "is_over": self.is_over,
            "case": self.case.to_dict() if self.case else None,
            "engine": self.engine.snapshot(),
            "prompt_block": self.engine.to_prompt_block(),
            "adherence_score": self.evaluation.adherence_score if self.evaluation else None,
        }


class SessionRegistry:
    """
    In-memory session storage. Each session processes one turn at a time.
    Sessions untouched for `idle_ttl_seconds` are evicted on the next create().
    """

    def __init__(self, idle_ttl_seconds: Optional[float] = SIMULATION_CONSTANTS.SESSION_IDLE_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self._sessions: Dict[str, SimulationSession] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()
        self.idle_ttl_seconds = idle_ttl_seconds
        self._clock = clock

    def create(self, specialty: str, difficulty: str, **start_kwargs) -> SimulationSession:
        self.evict_idle()
        session = SimulationSession()
        session.start(specialty, difficulty, **start_kwargs)
        with self._lock:
            self._sessions[session.session_id] = session
            self._last_seen[session.session_id] = self._clock()
        return session

    def get(self, session_id: str) -> SimulationSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._last_seen[session_id] = self._clock()
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    @contextmanager
    def acquire(self, session_id: str) -> Iterator[SimulationSession]:
        session = self.get(session_id)
        with session.lock:
            yield session

    def evict_idle(self) -> List[str]:
        """Drops sessions idle for longer than the TTL. None disables eviction."""
        if self.idle_ttl_seconds is None:
            return []
        cutoff = self._clock() - self.idle_ttl_seconds
        with self._lock:
            stale = [sid for sid, seen in self._last_seen.items() if seen < cutoff]
            for sid in stale:
                del self._sessions[sid]
                del self._last_seen[sid]
        if stale:
            logger.info(f"Evicted {len(stale)} idle session(s)")
        return stale

    def remove(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise SessionNotFoundError(session_id)
            self._last_seen.pop(session_id, None)
        logger.info(f"Session {session_id} removed")

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
