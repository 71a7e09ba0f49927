"""FastAPI application — Twilio webhooks and admin endpoints for the receptionist.

Endpoints:

  POST /twilio/voice          Twilio <Gather> webhook: one caller turn in, TwiML out
  POST /twilio/status         Twilio call status callback (completed calls close their session)
  POST /twilio/sms            Twilio inbound SMS webhook: Y/N replies and photos
  GET  /health                Health check
  GET  /api/sessions          Live call sessions (admin)
  GET  /api/sessions/{id}     One live call session (admin)
  GET  /api/metrics           Per-tenant outcome counters (admin)
  POST /api/test-booking      Write a throwaway event to check calendar wiring (admin)

The voice flow:
  1. An incoming call hits POST /twilio/voice with no SpeechResult
  2. We answer with the greeting inside a speech <Gather>
  3. Twilio posts each transcript (or an empty result on silence) back here
  4. The call ends with a <Say> and <Hangup> once the session finishes
"""

from __future__ import annotations

# Load .env into os.environ early so collaborators reading the
# environment directly see the same values as Settings.
from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from reception.auth import require_admin_token, verify_twilio_request
from reception.calendar_providers.base import CalendarEvent
from reception.config import settings
from reception.intake import IntakeService
from reception.phones import redact_pii
from reception.services import Services, build_services
from reception.session import SessionRegistry
from reception.twiml import gather_speech, say_and_hangup, sms_reply

log = logging.getLogger("reception.app")

_START_TIME = time.time()


def _parse_confidence(raw: str | None) -> float | None:
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except ValueError:
        return None


async def housekeeping_loop(services: Services, interval: float) -> None:
    """Heartbeat and metrics flush. Never touches call sessions."""
    log.info("Housekeeping loop started. Interval: %ss", interval)
    while True:
        await asyncio.sleep(interval)
        log.info("Heartbeat: %s", datetime.now(timezone.utc).isoformat())
        try:
            await services.metrics.flush(services.store)
        except Exception:
            log.exception("Housekeeping cycle error")


def create_app(services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for warning in settings.validate_startup():
            log.warning(warning)
        task = asyncio.create_task(
            housekeeping_loop(app.state.intake.services, settings.housekeeping_interval_seconds)
        )
        try:
            yield
        finally:
            task.cancel()

    app = FastAPI(
        title="Tradie Reception",
        description="Phone and SMS intake agent that books jobs into a shared calendar",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.intake = IntakeService(
        services or build_services(settings),
        SessionRegistry(ttl_seconds=settings.session_ttl_seconds),
    )

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check — confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime})

    # ── Twilio webhooks ────────────────────────────────────────

    @app.post("/twilio/voice", dependencies=[Depends(verify_twilio_request)])
    async def twilio_voice(request: Request) -> Response:
        """One caller turn: the Gather result in, the next prompt out as TwiML."""
        form = await request.form()
        intake: IntakeService = request.app.state.intake

        result = await intake.handle_voice_turn(
            call_id=str(form.get("CallSid", "")),
            from_number=str(form.get("From", "")),
            to_number=str(form.get("To", "")),
            transcript=str(form.get("SpeechResult", "")),
            confidence=_parse_confidence(form.get("Confidence")),
        )

        if result.expect_more_input:
            twiml = gather_speech(result.prompt, action=request.url.path)
        else:
            twiml = say_and_hangup(result.prompt)
        return Response(content=twiml, media_type="application/xml")

    @app.post("/twilio/status", dependencies=[Depends(verify_twilio_request)])
    async def twilio_status(request: Request) -> Response:
        form = await request.form()
        call_id = str(form.get("CallSid", ""))
        call_status = str(form.get("CallStatus", ""))
        log.info("Call %s status %s", call_id, call_status)
        await request.app.state.intake.handle_call_status(call_id, call_status)
        return Response(status_code=204)

    @app.post("/twilio/sms", dependencies=[Depends(verify_twilio_request)])
    async def twilio_sms(request: Request) -> Response:
        form = await request.form()
        from_number = str(form.get("From", ""))
        try:
            num_media = int(form.get("NumMedia", 0) or 0)
        except ValueError:
            num_media = 0
        media_urls = [
            str(form[f"MediaUrl{i}"]) for i in range(num_media) if form.get(f"MediaUrl{i}")
        ]

        try:
            reply = await request.app.state.intake.handle_sms(
                from_number=from_number,
                to_number=str(form.get("To", "")),
                body=str(form.get("Body", "")),
                media_urls=media_urls,
            )
        except Exception:
            log.exception("SMS handling failed for %s", redact_pii(from_number))
            reply = "Sorry, something went wrong. We'll be in touch shortly."
        return Response(content=sms_reply(reply), media_type="application/xml")

    # ── Admin API ──────────────────────────────────────────────

    @app.get("/api/sessions", dependencies=[Depends(require_admin_token)])
    async def list_sessions(request: Request) -> JSONResponse:
        """Return a summary of every live call session."""
        sessions = request.app.state.intake.registry.all()
        return JSONResponse({
            "sessions": [s.to_dict() for s in sessions],
            "count": len(sessions),
        })

    @app.get("/api/sessions/{call_id}", dependencies=[Depends(require_admin_token)])
    async def get_session(call_id: str, request: Request) -> JSONResponse:
        session = request.app.state.intake.registry.get(call_id)
        if not session:
            return JSONResponse({"error": "Session not found"}, status_code=404)
        return JSONResponse(session.to_dict())

    @app.get("/api/metrics", dependencies=[Depends(require_admin_token)])
    async def get_metrics(request: Request) -> JSONResponse:
        metrics = request.app.state.intake.services.metrics
        return JSONResponse({
            "since": metrics.started_at.isoformat(),
            "tenants": metrics.snapshot(),
        })

    @app.post("/api/test-booking", dependencies=[Depends(require_admin_token)])
    async def test_booking(request: Request, cleanup: bool = False) -> JSONResponse:
        """Write a 30 minute test event starting in 10 minutes on the default tenant's calendar."""
        services: Services = request.app.state.intake.services
        if services.calendar is None:
            return JSONResponse(
                {"ok": False, "error": "Calendar not configured. Set GOOGLE_SERVICE_ACCOUNT_JSON."},
                status_code=503,
            )

        tenant = services.tenants.default
        start = services.clock() + timedelta(minutes=10)
        event = CalendarEvent(
            summary="Test booking",
            description="Calendar wiring check",
            start=start,
            end=start + timedelta(minutes=30),
        )
        try:
            created = await services.calendar.create_event(tenant.calendar_id, event)
        except Exception as e:
            log.error("Test booking failed: %s", e)
            return JSONResponse({"ok": False, "error": str(e)}, status_code=500)

        if cleanup:
            created["cleaned_up"] = await services.calendar.cancel_event(
                tenant.calendar_id, created["event_id"],
            )
        return JSONResponse({"ok": True, **created})

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    for warning in settings.validate_startup():
        log.warning(warning)

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )
    uvicorn.run(
        "reception.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
