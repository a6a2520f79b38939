# main.py

import logging
import random
from typing import Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

# Import Domain Models & Logic
from models import SessionNotFoundError
from constants import SIMULATION_CONSTANTS, VERSION
from case_generator import generate_case, get_available_templates
from narrative import parse_narrative_response
from protocols import get_all_protocols
from simulation import SessionRegistry
from settings import get_settings

# --- 1. CONFIGURATION & LOGGING ---
settings = get_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("medsim-api")

app = FastAPI(
    title="MedSim API",
    version=VERSION,
    description="Deterministic physiology engine for LLM-narrated emergency medicine cases. \n\n"
                "**WARNING**: Educational simulator only. Not for clinical decision making.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

registry = SessionRegistry(idle_ttl_seconds=settings.session_idle_ttl_seconds)


@app.get("/")
def read_root():
    return {"status": "active", "message": "MedSim API is running successfully!"}


@app.get("/health")
def health_check():
    """Health probe"""
    return {"status": "active", "version": VERSION, "module": "medsim-physiology-engine", "sessions": len(registry)}


# --- 2. STRICT INPUT SCHEMA (The Guardrails) ---
class SeedVitals(BaseModel):
    heart_rate: Optional[int] = Field(None, ge=0, le=300)
    systolic_bp: Optional[int] = Field(None, ge=0, le=300)
    diastolic_bp: Optional[int] = Field(None, ge=0, le=250)
    sp_o2_percent: Optional[int] = Field(None, ge=0, le=100)
    respiratory_rate_bpm: Optional[int] = Field(None, ge=0, le=100)
    temp_celsius: Optional[float] = Field(None, ge=25.0, le=45.0)


class StartRequest(BaseModel):
    especialidade: str = Field(..., min_length=1, max_length=80, description="e.g. 'Cardiologia'")
    dificuldade: str = Field("RESIDENTE", pattern=f"^({'|'.join(SIMULATION_CONSTANTS.DIFFICULTIES)})$")
    use_generated_case: bool = Field(True, description="Pick a randomized case template for the specialty")
    seed: Optional[int] = Field(None, description="Seed for reproducible case generation")
    seed_vitals: Optional[SeedVitals] = None

    model_config = {
        "json_schema_extra": {
            "example": {"especialidade": "Cardiologia", "dificuldade": "RESIDENTE", "seed": 42}
        }
    }


class GenerateCaseRequest(BaseModel):
    especialidade: str = Field(..., min_length=1, max_length=80)
    seed: Optional[int] = None


class ActionRequest(BaseModel):
    action: str = Field(..., min_length=1, max_length=500, description="Free-text player action")
    is_critical: Optional[bool] = Field(None, description="Override critical-action detection")

    model_config = {
        "json_schema_extra": {"example": {"action": "Administrar Epinefrina 1mg IV"}}
    }


class NarrativeRequest(BaseModel):
    # Either the raw generator reply (JSON, possibly fenced) or plain narrative text
    raw: Optional[str] = Field(None, description="Raw narrative generator reply")
    text: Optional[str] = Field(None, description="Plain narrative text")
    estado_paciente: Optional[str] = Field(None, description="ESTAVEL|INSTAVEL|CRITICO|OBITO|CURADO")


# --- 3. EXPLICIT RESPONSE SCHEMA (The Contract) ---
class ActionResponse(BaseModel):
    action_text: str
    game_time_minutes: int
    is_critical: bool
    intervention_matched: bool
    minutes_elapsed: int
    vitals: Dict[str, float]
    prompt_block: str


class NarrativeResponse(BaseModel):
    patient_status: str
    active_conditions: List[str]
    divergent_vitals: Dict[str, Dict[str, float]]
    is_over: bool


def _run(label: str, fn):
    """Maps domain errors to HTTP: unknown session 404, validation 422, crash 500."""
    try:
        return fn()
    except HTTPException:
        raise
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Session not found: {e.args[0] if e.args else ''}")
    except ValueError as e:
        logger.warning(f"{label} rejected: {str(e)}")
        raise HTTPException(status_code=422, detail=f"{label} rejected: {str(e)}")
    except Exception as e:
        logger.error(f"{label} failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal Simulation Engine Error")


# --- 4. ENDPOINTS ---

@app.get("/protocols")
def list_protocols():
    return [
        {
            "name": p.name,
            "detection_keywords": list(p.detection_keywords),
            "items": [
                {
                    "id": i.id, "label": i.label, "target_minutes": i.target_minutes,
                    "weight": i.weight, "reference": i.reference,
                }
                for i in p.items
            ],
        }
        for p in get_all_protocols()
    ]


@app.get("/cases/templates")
def list_case_templates():
    return get_available_templates()


@app.post("/cases/generate")
def create_case(request: GenerateCaseRequest):
    def _generate():
        rng = random.Random(request.seed) if request.seed is not None else None
        case = generate_case(request.especialidade, rng)
        if case is None:
            raise HTTPException(status_code=404, detail=f"No case template for '{request.especialidade}'")
        return case.to_dict()
    return _run("Case generation", _generate)


@app.post("/sessions", status_code=201)
def start_session(request: StartRequest):
    def _start():
        logger.info(f"Starting session: {request.especialidade} / {request.dificuldade}")
        rng = random.Random(request.seed) if request.seed is not None else None
        seed_vitals = request.seed_vitals.model_dump(exclude_none=True) if request.seed_vitals else None
        session = registry.create(
            request.especialidade,
            request.dificuldade,
            seed_vitals=seed_vitals,
            use_generated_case=request.use_generated_case,
            rng=rng,
        )
        return {**session.snapshot(), "start_payload": session.start_payload()}
    return _run("Session start", _start)


@app.get("/sessions/{session_id}")
def get_session(session_id: str):
    def _get():
        with registry.acquire(session_id) as session:
            return session.snapshot()
    return _run("Session lookup", _get)


@app.post("/sessions/{session_id}/actions", response_model=ActionResponse)
def perform_action(session_id: str, request: ActionRequest):
    def _act():
        with registry.acquire(session_id) as session:
            return session.perform_action(request.action, request.is_critical).to_dict()
    return _run("Action", _act)


@app.post("/sessions/{session_id}/timeout", response_model=ActionResponse)
def register_timeout(session_id: str):
    def _timeout():
        with registry.acquire(session_id) as session:
            return session.register_timeout().to_dict()
    return _run("Timeout", _timeout)


@app.post("/sessions/{session_id}/narrative", response_model=NarrativeResponse)
def ingest_narrative(session_id: str, request: NarrativeRequest):
    def _ingest():
        if request.raw is None and request.text is None:
            raise ValueError("Provide either 'raw' or 'text'")
        with registry.acquire(session_id) as session:
            if request.raw is not None:
                turn = parse_narrative_response(request.raw)
                return session.ingest_narrative(turn, request.estado_paciente)
            return session.ingest_narrative(request.text, request.estado_paciente)
    return _run("Narrative", _ingest)


@app.get("/sessions/{session_id}/debrief")
def debrief_session(session_id: str):
    def _debrief():
        with registry.acquire(session_id) as session:
            return session.debrief()
    return _run("Debriefing", _debrief)


@app.delete("/sessions/{session_id}", status_code=204)
def delete_session(session_id: str):
    def _delete():
        registry.remove(session_id)
    _run("Session delete", _delete)


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
