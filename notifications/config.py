"""Shared configuration for the notification dispatch layer."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Tuple

VALID_PRIORITIES = {"low", "normal", "high"}
VALID_PRODUCTION_ALERT_TYPES = {"delay", "error", "info"}
VALID_SEVERITIES = {"info", "warning", "critical"}

DEFAULT_SEND_DELAY = 1.0
DEFAULT_FROM_NAME = "Lovilike - Personalización Premium"
DEFAULT_FROM_ADDRESS = "noreply@lovilike.com"
DEFAULT_DELAY_RESOLUTION = "2-4 horas adicionales"
DEFAULT_AFFECTED_SYSTEMS = ["Producción", "Inventario", "CRM"]
DEFAULT_RECOMMENDED_ACTIONS = [
    "Verificar logs del sistema",
    "Monitorear métricas de rendimiento",
    "Contactar al equipo técnico si persiste",
]

DEFAULT_USER_NAME = "Usuario"
DEFAULT_SHIPPING_ADDRESS = "Dirección no especificada"
DEFAULT_STATUS_MESSAGE = "Estado actualizado"
ORDER_STATUS_MESSAGES = {
    "CONFIRMED": "Tu pedido ha sido confirmado y está siendo preparado.",
    "IN_PRODUCTION": "Tu pedido está en producción. Nuestro equipo está trabajando en él.",
    "READY_FOR_PICKUP": "Tu pedido está listo para recoger en nuestra tienda.",
    "SHIPPED": "Tu pedido ha sido enviado y está en camino.",
    "DELIVERED": "¡Tu pedido ha sido entregado! Esperamos que disfrutes tus productos.",
    "CANCELLED": "Tu pedido ha sido cancelado.",
    "REFUNDED": "Tu pedido ha sido reembolsado.",
}

_FALSY = {"0", "false", "False", "no", "off", ""}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip() not in _FALSY


def _env_list(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True, slots=True)
class EmailSettings:
    """SMTP relay and sender configuration."""

    host: Optional[str] = "smtp.gmail.com"
    port: int = 587
    secure: bool = False  # implicit TLS (SMTPS)
    use_tls: bool = True  # STARTTLS when not secure
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: Optional[str] = DEFAULT_FROM_ADDRESS
    from_name: str = DEFAULT_FROM_NAME
    reply_to: Optional[str] = None
    app_url: str = ""
    admin_recipients: Tuple[str, ...] = field(default_factory=tuple)
    send_delay: float = DEFAULT_SEND_DELAY
    timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "EmailSettings":
        username = os.getenv("SMTP_USERNAME") or os.getenv("SMTP_USER")
        from_address = (
            os.getenv("SMTP_FROM")
            or os.getenv("NOTIFY_FROM_EMAIL")
            or username
            or DEFAULT_FROM_ADDRESS
        )
        return cls(
            host=os.getenv("SMTP_HOST", "smtp.gmail.com") or None,
            port=int(os.getenv("SMTP_PORT", "587")),
            secure=_env_flag("SMTP_SECURE", False),
            use_tls=_env_flag("SMTP_USE_TLS", True),
            username=username,
            password=os.getenv("SMTP_PASSWORD") or os.getenv("SMTP_PASS"),
            from_address=from_address,
            from_name=os.getenv("NOTIFY_FROM_NAME", DEFAULT_FROM_NAME),
            reply_to=os.getenv("NOTIFY_REPLY_TO") or None,
            app_url=os.getenv("NOTIFY_APP_URL", "").rstrip("/"),
            admin_recipients=_env_list("NOTIFY_ADMIN_EMAILS"),
            send_delay=float(os.getenv("NOTIFY_SEND_DELAY", str(DEFAULT_SEND_DELAY))),
            timeout=float(os.getenv("SMTP_TIMEOUT", "10")),
        )


@lru_cache(maxsize=1)
def get_settings() -> EmailSettings:
    """Settings are read once per process; call ``get_settings.cache_clear()`` to reload."""
    return EmailSettings.from_env()
