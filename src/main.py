"""FastAPI application entry point: wires everything together.

Usage:
    python -m src.main

Starts FastAPI with the WhatsApp webhook and a health check.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from src.audit import audit_on_event
from src.booking.ledger import TurnoLedger
from src.booking.negotiator import BookingNegotiator
from src.channels.whatsapp import whatsapp_router
from src.config import settings
from src.conversation.catalog import build_catalog
from src.conversation.router import ConversationRouter
from src.events import emit, start_event_system, stop_event_system, subscribe
from src.integrations.calcom.client import CalcomClient
from src.integrations.mercadopago.client import MercadoPagoClient
from src.schemas.events import EventType, SystemEvent

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting TurnoBot (env=%s)", settings.environment)

    # 1. External clients. A missing Cal.com key stops startup here.
    calendar = CalcomClient(settings.scheduling)
    payments = MercadoPagoClient(settings.payment)
    logger.info("Cal.com and MercadoPago clients ready")

    # 2. Event system
    await start_event_system()
    logger.info("Event system started")

    # 3. Audit logging, always active (global subscriber)
    subscribe(audit_on_event)
    logger.info("Audit logging subscriber registered")

    # 4. Conversation router
    ledger = TurnoLedger()
    negotiator = BookingNegotiator(payments, settings.payment, settings.scheduling, ledger)
    app.state.router = ConversationRouter(
        calendar=calendar,
        negotiator=negotiator,
        ledger=ledger,
        catalog=build_catalog(settings.scheduling),
        settings=settings,
    )
    app.state.calendar = calendar
    app.state.payments = payments
    app.state.negotiator = negotiator
    logger.info("Conversation router ready")

    await emit(SystemEvent(
        event_type=EventType.SYSTEM_STARTUP,
        data={"environment": settings.environment},
        source_module="main",
    ))

    try:
        yield
    finally:
        # Shutdown in reverse order
        logger.info("Shutting down TurnoBot...")

        await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))

        await stop_event_system()
        logger.info("Event system stopped")

        await payments.close()
        await calendar.close()
        logger.info("HTTP clients closed")

    logger.info("TurnoBot shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="TurnoBot API",
    description="WhatsApp turno booking with Cal.com availability and MercadoPago payments",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(whatsapp_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
