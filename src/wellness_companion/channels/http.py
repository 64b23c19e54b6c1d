"""HTTP surface of the wellness engine (FastAPI).

The caller is selected by the optional ``X-User-Id`` header; requests
without it act on the default user.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from wellness_companion.agent import AgentRegistry, WellnessAgent
from wellness_companion.config import settings
from wellness_companion.errors import (
    NotFoundError,
    ScheduleError,
    ValidationError,
    WellnessError,
)
from wellness_companion.logging import format_log_context, get_logger, truncate_log_text

logger = get_logger(__name__)


# ============================================================================
# Request models
# ============================================================================


class UpdateNameRequest(BaseModel):
    name: str = Field(..., description="New agent name (1-50 characters)")


class UpdateModelProviderRequest(BaseModel):
    provider: str = Field(..., description="openai or workers-ai")


class UpdateCheckInTimeRequest(BaseModel):
    checkInTime: str = Field(..., description="HH:MM, 24-hour clock")


class UpdateTimezoneRequest(BaseModel):
    timezone: str = Field(..., description="IANA timezone name")


class SaveCheckInRequest(BaseModel):
    emotionalTone: str = Field(..., description="positive, neutral or negative")
    summary: str
    recommendations: list[str] = Field(default_factory=list)


class MessageBody(BaseModel):
    message: str = ""


class RecommendationsRequest(BaseModel):
    emotionalTone: str = "neutral"
    intensity: int = 5


class CheckInResponseRequest(BaseModel):
    response: str


class InboundMessageRequest(BaseModel):
    content: str = Field(..., description="The user's message")


# ============================================================================
# Error mapping
# ============================================================================


def _status_for(error: WellnessError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (ValidationError, ScheduleError)):
        return 400
    return 500


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(WellnessError)
    async def _wellness_error(request: Request, exc: WellnessError) -> JSONResponse:
        status = _status_for(exc)
        ctx = format_log_context("http_error", channel="http", path=request.url.path, status=status)
        logger.warning(f"{ctx} {exc}")
        return JSONResponse(status_code=status, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": details or "Invalid request"})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        ctx = format_log_context("http_error", channel="http", path=request.url.path, status=500)
        logger.opt(exception=exc).error(f"{ctx} unhandled error")
        return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})


# ============================================================================
# App factory
# ============================================================================


def create_app(registry: AgentRegistry | None = None) -> FastAPI:
    """Build the FastAPI app around an agent registry."""
    registry = registry or AgentRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await registry.start()
        logger.info(f"{format_log_context('system', channel='http')} ready")
        try:
            yield
        finally:
            await registry.shutdown()

    app = FastAPI(
        title=settings.AGENT_NAME,
        description="Scheduled wellness check-ins and recommendations",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.registry = registry
    _register_error_handlers(app)

    async def current_agent(x_user_id: str | None = Header(default=None)) -> WellnessAgent:
        return await registry.get(x_user_id or None)

    # ------------------------------------------------------------------------
    # Internal endpoints
    # ------------------------------------------------------------------------

    @app.post("/internal/update-name")
    async def update_name(body: UpdateNameRequest, agent: WellnessAgent = Depends(current_agent)):
        prefs = agent.update_agent_name(body.name)
        return {"success": True, "name": prefs.agent_name}

    @app.post("/internal/update-model-provider")
    async def update_model_provider(
        body: UpdateModelProviderRequest, agent: WellnessAgent = Depends(current_agent)
    ):
        prefs = agent.update_model_provider(body.provider)
        return {"success": True, "provider": prefs.model_provider}

    @app.post("/internal/update-check-in-time")
    async def update_check_in_time(
        body: UpdateCheckInTimeRequest, agent: WellnessAgent = Depends(current_agent)
    ):
        prefs = await agent.update_check_in_time(body.checkInTime)
        return {"success": True, "checkInTime": prefs.check_in_time}

    @app.post("/internal/update-timezone")
    async def update_timezone(
        body: UpdateTimezoneRequest, agent: WellnessAgent = Depends(current_agent)
    ):
        prefs = await agent.update_timezone(body.timezone)
        return {"success": True, "timezone": prefs.timezone}

    @app.post("/internal/save-check-in")
    async def save_check_in(body: SaveCheckInRequest, agent: WellnessAgent = Depends(current_agent)):
        record = agent.save_check_in(body.emotionalTone, body.summary, body.recommendations)
        return {"success": True, "checkIn": record.to_dict()}

    @app.post("/internal/send-message")
    async def send_message(body: MessageBody, agent: WellnessAgent = Depends(current_agent)):
        await agent.send_message(body.message)
        return {"success": True}

    @app.post("/internal/analyze-tone")
    async def analyze_tone(body: MessageBody, agent: WellnessAgent = Depends(current_agent)):
        if not body.message.strip():
            raise ValidationError("Message is required")
        analysis = await agent.analyze_tone(body.message)
        return analysis.model_dump()

    @app.post("/internal/get-recommendations")
    async def get_recommendations(
        body: RecommendationsRequest, agent: WellnessAgent = Depends(current_agent)
    ):
        return {"recommendations": agent.get_recommendations(body.emotionalTone, body.intensity)}

    @app.post("/internal/check-in-response")
    async def check_in_response(
        body: CheckInResponseRequest, agent: WellnessAgent = Depends(current_agent)
    ):
        delivered = agent.deliver_check_in_response(body.response)
        return {"success": True, "delivered": delivered}

    # ------------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------------

    @app.post("/message")
    async def inbound_message(
        body: InboundMessageRequest, agent: WellnessAgent = Depends(current_agent)
    ):
        ctx = format_log_context("message", channel="http", user=agent.user_id)
        logger.info(f"{ctx} recv text={truncate_log_text(body.content)}")
        result = await agent.handle_user_message(body.content)
        return {"success": True, **result}

    @app.get("/get-messages")
    async def get_messages(agent: WellnessAgent = Depends(current_agent)) -> list[dict[str, Any]]:
        return [message.to_dict() for message in agent.channel.history(agent.user_id)]

    # ------------------------------------------------------------------------
    # Check-ins, schedules, state
    # ------------------------------------------------------------------------

    @app.get("/check-ins")
    async def check_ins(limit: int = 7, agent: WellnessAgent = Depends(current_agent)):
        return {"checkIns": [record.to_dict() for record in agent.get_check_in_history(limit)]}

    @app.get("/schedules")
    async def schedules(agent: WellnessAgent = Depends(current_agent)):
        return {"schedules": [job.to_dict() for job in agent.list_schedules()]}

    @app.delete("/schedules/{job_id}")
    async def cancel_schedule(job_id: str, agent: WellnessAgent = Depends(current_agent)):
        agent.cancel_schedule(job_id)
        return {"success": True}

    @app.get("/state")
    async def state(agent: WellnessAgent = Depends(current_agent)):
        return agent.state.to_dict()

    @app.post("/test-check-in")
    async def test_check_in(agent: WellnessAgent = Depends(current_agent)):
        task = await agent.execute_daily_check_in("Manual test check-in")
        if task is None:
            return {"success": True, "message": "A check-in is already awaiting a reply"}
        return {"success": True, "message": "Check-in triggered manually"}

    @app.get("/health")
    async def health():
        return {"status": "healthy", "agent": settings.AGENT_NAME, "mode": settings.CHECK_IN_MODE}

    return app
