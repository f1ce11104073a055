"""WhatsApp Cloud API channel for the barbershop bot.

Routes:
- GET  /webhook/whatsapp  → subscription handshake with Meta
- POST /webhook/whatsapp  → inbound customer messages

Replies go back through graph.facebook.com one at a time, each after its
own delay, so the customer sees them in the order the flow produced them.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging

import httpx
from fastapi import APIRouter, Query, Request, Response

from src.config import settings
from src.conversation.router import ConversationRouter
from src.conversation.steps import OutboundMessage
from src.events import emit
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

whatsapp_router = APIRouter(prefix="/webhook", tags=["whatsapp"])

UNSUPPORTED_MESSAGE = (
    "Disculpa, por ahora solo puedo leer mensajes de texto. "
    "¿Puedes escribir tu respuesta?"
)
FALLBACK_ERROR = "❌ Ocurrió un error al procesar tu solicitud. Por favor, inténtalo de nuevo más tarde."

SEND_TIMEOUT = 15.0

# Strong references for in-flight message tasks
_background_tasks: set[asyncio.Task[None]] = set()

# ── Helpers ──────────────────────────────────────────────────────────


def _is_configured() -> bool:
    wa = settings.whatsapp
    return all((wa.whatsapp_api_url, wa.whatsapp_api_token, wa.whatsapp_verify_token))


def _verify_signature(payload: bytes, signature_header: str) -> bool:
    """Check Meta's X-Hub-Signature-256 HMAC over the raw body.

    Without an app secret (local development) every payload is accepted.
    """
    secret = settings.whatsapp.whatsapp_app_secret
    if not secret:
        return True

    prefix, _, received = signature_header.partition("=")
    if prefix != "sha256" or not received:
        return False

    digest = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, received)


def _auth_headers() -> dict[str, str]:
    token = settings.whatsapp.whatsapp_api_token
    return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}


def extract_text(message: dict) -> str | None:
    """Text carried by a WhatsApp message; None for unsupported types."""
    kind = message.get("type", "")
    if kind == "text":
        return message.get("text", {}).get("body", "")
    if kind != "interactive":
        return None

    # Button and list replies carry the chosen option's title
    interactive = message.get("interactive", {})
    reply = interactive.get(interactive.get("type", ""), {})
    return reply.get("title", "") if isinstance(reply, dict) else ""


def _iter_messages(payload: dict):
    """Yield every message in a webhook payload (entry → changes → value)."""
    for entry in payload.get("entry", []):
        for change in entry.get("changes", []):
            yield from change.get("value", {}).get("messages", [])


# ── Webhook endpoints ────────────────────────────────────────────────


@whatsapp_router.get("/whatsapp")
async def verify_webhook(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
) -> Response:
    """Echo Meta's challenge back when the verify token matches ours."""
    if not _is_configured():
        return Response(content="WhatsApp not configured", status_code=503)

    token_ok = hub_verify_token == settings.whatsapp.whatsapp_verify_token
    if hub_mode == "subscribe" and token_ok and hub_challenge is not None:
        logger.info("WhatsApp webhook subscription confirmed")
        return Response(content=hub_challenge, media_type="text/plain")

    logger.warning("Rejected WhatsApp webhook handshake (mode=%s)", hub_mode)
    return Response(content="Verification failed", status_code=403)


@whatsapp_router.post("/whatsapp")
async def receive_webhook(request: Request) -> dict[str, str]:
    """Accept a webhook delivery and hand each message to a background task.

    Meta retries deliveries that are slow to acknowledge, so the response
    does not wait for the conversation to run.
    """
    if not _is_configured():
        return {"status": "not_configured"}

    raw = await request.body()
    if not _verify_signature(raw, request.headers.get("X-Hub-Signature-256", "")):
        logger.warning("Dropping WhatsApp delivery with a bad signature")
        return {"status": "invalid_signature"}

    router: ConversationRouter = request.app.state.router
    for message in _iter_messages(await request.json()):
        task = asyncio.create_task(handle_whatsapp_message(router, message))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    return {"status": "ok"}


# ── Message handling ─────────────────────────────────────────────────


async def handle_whatsapp_message(router: ConversationRouter, message: dict) -> None:
    """Run one inbound message through the router and deliver the replies."""
    wa_id = message.get("from", "")
    text = extract_text(message)

    if text is None:
        await send_whatsapp_message(wa_id, UNSUPPORTED_MESSAGE)
        return
    if not text.strip():
        return

    await emit(SystemEvent(
        event_type=EventType.MESSAGE_RECEIVED,
        sender_id=wa_id,
        data={"channel": "whatsapp", "type": message.get("type", "")},
        source_module="channels.whatsapp",
    ))

    try:
        replies = await router.handle(wa_id, text)
    except Exception:
        logger.exception("Conversation failed for WhatsApp sender %s", wa_id)
        replies = [OutboundMessage(text=FALLBACK_ERROR)]

    await send_replies(wa_id, replies)


async def send_replies(to: str, replies: list[OutboundMessage]) -> None:
    """Send replies in order, honoring each one's delay."""
    for reply in replies:
        if reply.delay > 0:
            await asyncio.sleep(reply.delay)
        await send_whatsapp_message(to, reply.text)


# ── Message sending ──────────────────────────────────────────────────


async def send_whatsapp_message(to: str, text: str) -> bool:
    """POST one text message to the Cloud API. False when delivery fails."""
    url = settings.whatsapp.whatsapp_api_url.rstrip("/") + "/messages"
    body = {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "text",
        "text": {"body": text},
    }

    try:
        async with httpx.AsyncClient(timeout=SEND_TIMEOUT) as client:
            response = await client.post(url, json=body, headers=_auth_headers())
            response.raise_for_status()
    except httpx.HTTPError:
        logger.exception("WhatsApp send to %s failed", to)
        return False

    await emit(SystemEvent(
        event_type=EventType.MESSAGE_SENT,
        sender_id=to,
        data={"channel": "whatsapp", "length": len(text)},
        source_module="channels.whatsapp",
    ))
    return True
