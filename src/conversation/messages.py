"""User-facing Spanish texts for the turno flows.

Kept in one place so the flows read as control logic and tests can assert
on the exact wording.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from decimal import Decimal

from src.conversation.catalog import ServiceOption
from src.models.enums import TurnoStatus

# ── Router ────────────────────────────────────────────────────────────────

WELCOME = "¡Hola! 👋 Bienvenido al sistema de gestión de turnos."
MENU = (
    "¿En qué puedo ayudarte hoy?\n"
    "1. 📅 *Solicitar un turno*\n"
    "2. ❌ *Cancelar un turno*\n"
    "3. 📋 *Ver mis turnos*"
)

# ── Turno request ─────────────────────────────────────────────────────────

GREETING = "¡Hola! Vamos a agendar tu turno. Primero necesito algunos datos:"
ASK_NAME = "¿Cuál es tu nombre completo?"
ASK_EMAIL = "Por favor, ingresa tu correo electrónico para enviarte la confirmación y recordatorios:"
ASK_DATE = "📅 Ingresa la fecha deseada (DD/MM/AAAA):"
ASK_TIME = "⏰ ¿A qué hora prefieres tu cita? (HH:MM en formato 24h, por ejemplo: 14:30)"
CONFIRM_HEADER = "📝 Por favor, confirma los datos de tu turno:"
ASK_CONFIRMATION = "Por favor, responde SI o NO para confirmar tu turno:"

SERVICE_SELECTED = "✅ *{nombre}* seleccionado. Duración: {duracion} minutos."

INVALID_NAME = "❌ Por favor, ingresa tu nombre completo."
INVALID_EMAIL = "❌ Por favor, ingresa un correo electrónico válido."
INVALID_SERVICE = "❌ Opción no válida. Por favor, selecciona una opción del 1 al {count}."
INVALID_DATE_FORMAT = "❌ Formato de fecha inválido. Por favor usa el formato DD/MM/AAAA"
INVALID_CALENDAR_DATE = "❌ Esa fecha no existe en el calendario. Por favor, elige otra fecha."
PAST_DATE = "❌ No se pueden agendar citas en fechas pasadas. Por favor, elige otra fecha."
NO_DAY_AVAILABILITY = "❌ No hay disponibilidad para la fecha seleccionada. Por favor, elige otra fecha."
INVALID_TIME_FORMAT = "❌ Formato de hora inválido. Por favor usa el formato HH:MM (ejemplo: 14:30)"
OUTSIDE_BUSINESS_HOURS = (
    "❌ Nuestro horario de atención es de {open_hour}:00 a {close_hour}:00. "
    "Por favor, elige otro horario."
)
SLOT_TAKEN = "❌ El horario seleccionado no está disponible. Por favor, elige otro horario."
SERVICE_UNAVAILABLE = (
    "⚠️ No pudimos consultar la agenda en este momento. "
    "Por favor, inténtalo de nuevo en unos minutos."
)
INVALID_CONFIRMATION = "❌ Respuesta no válida. Por favor, responde SI o NO para confirmar tu turno."

FAREWELL = "❌ Turno cancelado. Si cambias de opinión, ¡estaré encantado de ayudarte a agendar otro turno!"
GENERIC_ERROR = "❌ Ocurrió un error al procesar tu solicitud. Por favor, inténtalo de nuevo más tarde."
FLOW_EXPIRED = "⌛ Tu solicitud anterior expiró por inactividad."

PAYMENT_LINK_ONLY = "💳 *Enlace de pago directo:*\n{url}"

# ── Cancel / list ─────────────────────────────────────────────────────────

ASK_TURNO_ID = "Por favor, ingresa el número de turno que deseas cancelar:"
TURNO_CANCELLED = (
    "❌ *Turno cancelado*\n"
    "ID: {turno_id}\n\n"
    "Si necesitas un nuevo turno, escribe *solicitar turno*."
)
TURNO_NOT_FOUND = (
    "No se encontró ningún turno con ese ID. "
    "Verifica el número e inténtalo de nuevo o escribe *solicitar turno* para agendar uno nuevo."
)
NO_TURNOS = "No tienes turnos programados.\n\n¿Te gustaría agendar uno? Escribe *solicitar turno*"

_WEEKDAYS = ("lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo")
_MONTHS = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)


# ── Formatting helpers ────────────────────────────────────────────────────


def format_pesos(amount: Decimal) -> str:
    """Format a Decimal as Argentine pesos: $1.500 or $1.500,50"""
    abs_val = abs(amount)
    integer_part = int(abs_val)
    cents = round((abs_val - integer_part) * 100)
    int_str = f"{integer_part:,}".replace(",", ".")
    sign = "-" if amount < 0 else ""
    if cents:
        return f"{sign}${int_str},{cents:02d}"
    return f"{sign}${int_str}"


def format_long_datetime(moment: datetime) -> str:
    """e.g. 'martes, 15 de julio, 14:00' (caller passes local time)."""
    weekday = _WEEKDAYS[moment.weekday()]
    month = _MONTHS[moment.month - 1]
    return f"{weekday}, {moment.day} de {month}, {moment:%H:%M}"


def service_menu(catalog: Mapping[str, ServiceOption]) -> str:
    lines = ["¿Qué servicio necesitas?"]
    for opt in catalog.values():
        lines.append(f"{opt.key}. {opt.emoji} {opt.nombre} ({format_pesos(opt.precio)})")
    return "\n".join(lines)


def summary(nombre: str, email: str, servicio: str, precio: Decimal, fecha: str, hora: str) -> str:
    return (
        "*Resumen de tu turno:*\n\n"
        f"👤 *Nombre:* {nombre}\n"
        f"📧 *Email:* {email}\n"
        f"💈 *Servicio:* {servicio}\n"
        f"💰 *Precio:* {format_pesos(precio)}\n"
        f"📅 *Fecha:* {fecha}\n"
        f"⏰ *Hora:* {hora}\n\n"
        "¿Confirmas el turno con estos datos? (responde SI/NO)"
    )


def payment_link(precio: Decimal, start_local: datetime, url: str, window_minutes: int) -> str:
    return (
        "🔔 *¡Genial!* Tu turno está casi listo. Por favor, completa el pago para confirmar tu reserva.\n\n"
        f"💳 *Monto a pagar:* {format_pesos(precio)}\n"
        f"📅 *Fecha:* {format_long_datetime(start_local)}\n\n"
        f"Por favor, haz clic en el siguiente enlace para realizar el pago:\n{url}\n\n"
        f"*Importante:* Tienes {window_minutes} minutos para completar el pago "
        "o tu turno será cancelado automáticamente."
    )


TURNO_STATUS_LABELS = {
    TurnoStatus.PENDING_PAYMENT: "Pendiente de pago",
    TurnoStatus.CONFIRMED: "Confirmado",
}


def turno_list(turnos: Iterable) -> str:
    """Render TurnoRecords for the 'ver mis turnos' option."""
    parts = ["*Tus turnos programados:*\n"]
    for index, turno in enumerate(turnos, start=1):
        parts.append(
            f"*Turno #{index}*\n"
            f"🔹 *ID:* {turno.id}\n"
            f"✂️ *Servicio:* {turno.servicio}\n"
            f"📅 *Fecha:* {turno.fecha} a las {turno.hora}\n"
            f"📌 *Estado:* {TURNO_STATUS_LABELS.get(turno.status, turno.status)}\n"
        )
    parts.append(
        "¿Necesitas algo más? Puedes:\n"
        "• *Cancelar un turno*\n"
        "• *Solicitar un nuevo turno*"
    )
    return "\n".join(parts)
