"""
HTML email rendering.

Templates live in kilofly/templates/email and share base.html. Autoescape
is on for every template; user text goes through the nl2br filter which
escapes first and then turns newlines into <br>.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape
from markupsafe import Markup, escape

SIGNATURE_TYPE_LABELS = {"sender": "Expéditeur", "transporter": "Transporteur"}
SIGNATURE_ACTION_LABELS = {"sender": "envoi de colis", "transporter": "transport de colis"}


def nl2br(value: Any) -> Markup:
    text = str(escape(value or "")).replace("\r\n", "\n")
    return Markup(text.replace("\n", "<br>"))


def _build_env() -> Environment:
    env = Environment(
        loader=PackageLoader("kilofly", "templates/email"),
        autoescape=select_autoescape(["html"]),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["nl2br"] = nl2br
    return env


_env = _build_env()


def _render(name: str, **context: Any) -> str:
    context.setdefault("year", datetime.now(timezone.utc).year)
    return _env.get_template(name).render(**context)


def render_admin_email(message: str, *, heading: str = "Message de l'administration", year: int | None = None) -> str:
    return _render("admin_message.html", message=message, heading=heading, year=year or datetime.now(timezone.utc).year)


def welcome_subject() -> str:
    return "✈️ Bienvenue sur KiloFly"


def render_welcome_email(*, first_name: str, email: str, app_url: str) -> str:
    return _render("welcome.html", first_name=first_name, email=email, app_url=app_url)


def signature_subject(signature_type: str) -> str:
    return f"✅ Confirmation de signature - {SIGNATURE_TYPE_LABELS[signature_type]}"


def format_signed_at(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%d/%m/%Y à %H:%M UTC")


def render_signature_email(
    *,
    user_name: str,
    signature_type: str,
    signed_at: datetime,
    conditions: Iterable[str],
    ip_address: str | None = None,
    reservation: Mapping[str, Any] | None = None,
    has_attachment: bool = False,
) -> str:
    return _render(
        "signature_confirmation.html",
        user_name=user_name,
        type_label=SIGNATURE_TYPE_LABELS[signature_type],
        action_label=SIGNATURE_ACTION_LABELS[signature_type],
        signed_at=format_signed_at(signed_at),
        ip_address=ip_address,
        conditions=list(conditions),
        reservation=reservation,
        has_attachment=has_attachment,
    )


def reservation_summary(*, reservation_id: str, departure: str, arrival: str, kg: Decimal, amount: Decimal, currency: str) -> dict[str, str]:
    return {
        "reference": reservation_id.split("_", 1)[-1][:8].upper(),
        "route": f"{departure} → {arrival}",
        "kg": str(kg),
        "amount": f"{amount} {currency}",
    }
