"""FastAPI application for the property sales workflow."""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from opentelemetry import trace
from pydantic import BaseModel, Field

from property_sales import __version__
from property_sales.agents.base import build_agent_context
from property_sales.checkpoint import open_checkpoint_store
from property_sales.config import get_settings
from property_sales.database import close_db, create_engine, create_session_factory, init_db
from property_sales.engine import WorkflowEngine
from property_sales.errors import (
    NotFoundError,
    PropertySalesError,
    StageConflictError,
    StorageTimeoutError,
    ValidationError,
)
from property_sales.middleware import MetricsMiddleware
from property_sales.orchestrator import HistoryEntry, WorkflowOrchestrator, WorkflowStatus
from property_sales.repository import PropertyInput, PropertyRepository
from property_sales.state import HumanRole, LeadConversation, PropertySnapshot
from property_sales.telemetry import instrument_fastapi, setup_telemetry


settings = get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Open the listing database and checkpoint store once; close both on shutdown."""
    db_engine = create_engine(settings)
    setup_telemetry(db_engine)
    await init_db(db_engine)
    logger.info("Database initialized")

    async with AsyncExitStack() as stack:
        stack.push_async_callback(close_db, db_engine)
        store = await stack.enter_async_context(open_checkpoint_store(settings))

        properties = PropertyRepository(create_session_factory(db_engine))
        engine = WorkflowEngine(store, build_agent_context(settings))
        app.state.properties = properties
        app.state.orchestrator = WorkflowOrchestrator(engine, properties)
        yield
    logger.info("Database connections closed")


app = FastAPI(
    title="Property Sales Workflow",
    description="Human-in-the-loop agent workflow for residential property sales",
    version=__version__,
    lifespan=lifespan,
)
app.add_middleware(MetricsMiddleware)
instrument_fastapi(app)


def get_orchestrator(request: Request) -> WorkflowOrchestrator:
    return request.app.state.orchestrator


def get_properties(request: Request) -> PropertyRepository:
    return request.app.state.properties


OrchestratorDep = Annotated[WorkflowOrchestrator, Depends(get_orchestrator)]
PropertiesDep = Annotated[PropertyRepository, Depends(get_properties)]


def _error_response(status_code: int, exc: PropertySalesError) -> JSONResponse:
    content: dict[str, Any] = {"error": type(exc).__name__, "detail": exc.message}
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        content["trace_id"] = format(span_context.trace_id, "032x")
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(PropertySalesError)
async def handle_workflow_error(request: Request, exc: PropertySalesError) -> JSONResponse:
    if isinstance(exc, ValidationError):
        return _error_response(400, exc)
    if isinstance(exc, NotFoundError):
        return _error_response(404, exc)
    if isinstance(exc, StageConflictError):
        return _error_response(409, exc)
    if isinstance(exc, StorageTimeoutError):
        logger.warning("Storage timeout on %s: %s", request.url.path, exc)
        return _error_response(503, exc)
    logger.error("Workflow error on %s: %s", request.url.path, exc)
    return _error_response(500, exc)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str
    checkpoint_store: bool


class PropertyCreated(BaseModel):
    property: PropertySnapshot
    workflow: WorkflowStatus


class ResumeRequest(BaseModel):
    """Human reply to a suspended workflow."""

    human_response: str
    human_role: HumanRole = "broker"
    lead_id: str | None = None
    lead_email: str | None = None
    lead_phone: str | None = None
    lead_name: str | None = None


class OfferRequest(BaseModel):
    amount: float = Field(gt=0)
    conditions: list[str] = Field(default_factory=list)
    lead_id: str | None = None


class LeadMessageRequest(BaseModel):
    message: str
    lead_email: str | None = None
    lead_phone: str | None = None
    lead_name: str | None = None


@app.get("/health", response_model=HealthResponse)
async def health_check(orchestrator: OrchestratorDep) -> HealthResponse:
    """Health check endpoint."""
    store_ok = await orchestrator.health_check()
    return HealthResponse(
        status="healthy" if store_ok else "degraded",
        service=settings.app_name,
        version=__version__,
        checkpoint_store=store_ok,
    )


@app.post("/properties", response_model=PropertyCreated, status_code=201)
async def create_property(
    request: PropertyInput, properties: PropertiesDep, orchestrator: OrchestratorDep
) -> PropertyCreated:
    """Create a listing and start its sale workflow."""
    snapshot = await properties.create(request)
    status = await orchestrator.start_workflow(snapshot.id, snapshot)
    return PropertyCreated(property=snapshot, workflow=status)


@app.get("/properties/{property_id}", response_model=PropertySnapshot)
async def get_property(property_id: str, properties: PropertiesDep) -> PropertySnapshot:
    snapshot = await properties.find_by_id(property_id)
    if snapshot is None:
        raise NotFoundError(f"Property {property_id} not found")
    return snapshot


@app.post("/properties/{property_id}/workflow", response_model=WorkflowStatus)
async def start_workflow(property_id: str, orchestrator: OrchestratorDep) -> WorkflowStatus:
    return await orchestrator.start_workflow(property_id)


@app.get("/properties/{property_id}/workflow", response_model=WorkflowStatus)
async def get_workflow_status(property_id: str, orchestrator: OrchestratorDep) -> WorkflowStatus:
    return await orchestrator.get_status(property_id)


@app.post("/properties/{property_id}/workflow/resume", response_model=WorkflowStatus)
async def resume_workflow(
    property_id: str, request: ResumeRequest, orchestrator: OrchestratorDep
) -> WorkflowStatus:
    """Resume a suspended workflow with a broker or lead reply."""
    return await orchestrator.resume_workflow(
        property_id,
        request.human_response,
        human_role=request.human_role,
        lead_id=request.lead_id,
        lead_email=request.lead_email,
        lead_phone=request.lead_phone,
        lead_name=request.lead_name,
    )


@app.get("/properties/{property_id}/workflow/history", response_model=list[HistoryEntry])
async def get_workflow_history(
    property_id: str, orchestrator: OrchestratorDep
) -> list[HistoryEntry]:
    return await orchestrator.get_history(property_id)


@app.post("/properties/{property_id}/offers", response_model=WorkflowStatus)
async def submit_offer(
    property_id: str, request: OfferRequest, orchestrator: OrchestratorDep
) -> WorkflowStatus:
    return await orchestrator.submit_offer(
        property_id, request.amount, request.conditions, request.lead_id
    )


@app.post("/properties/{property_id}/leads/message", response_model=WorkflowStatus)
async def receive_lead_message(
    property_id: str, request: LeadMessageRequest, orchestrator: OrchestratorDep
) -> WorkflowStatus:
    """Inbound message from a prospective buyer."""
    return await orchestrator.receive_lead_message(
        property_id,
        request.message,
        lead_email=request.lead_email,
        lead_phone=request.lead_phone,
        lead_name=request.lead_name,
    )


@app.get(
    "/properties/{property_id}/leads/{lead_id}/conversation", response_model=LeadConversation
)
async def get_lead_conversation(
    property_id: str, lead_id: str, orchestrator: OrchestratorDep
) -> LeadConversation:
    return await orchestrator.get_lead_conversation(property_id, lead_id)
