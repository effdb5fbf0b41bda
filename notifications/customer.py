"""Request builders for customer-facing emails.

Each builder takes the order or user record as the storefront hands it over
and returns a :class:`NotificationRequest` ready for ``send_notification``,
the dispatch queue or ``schedule_notification``. Payloads are flattened to
JSON-safe values so the same request can travel through Celery.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlencode

from .config import (
    DEFAULT_SHIPPING_ADDRESS,
    DEFAULT_STATUS_MESSAGE,
    DEFAULT_USER_NAME,
    ORDER_STATUS_MESSAGES,
    get_settings,
)
from .models import NotificationKind, NotificationRequest


def _json_date(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _app_url(app_url: Optional[str]) -> str:
    if app_url is None:
        app_url = get_settings().app_url
    return app_url.rstrip("/")


def format_address(address: Any) -> str:
    """One-line shipping address; structured addresses are joined with commas."""
    if isinstance(address, Mapping):
        parts = [address.get(key) for key in ("street", "city", "state", "postalCode")]
        return ", ".join(str(part) for part in parts if part) or DEFAULT_SHIPPING_ADDRESS
    return address or DEFAULT_SHIPPING_ADDRESS


def _order_items(items: Any) -> List[Dict[str, Any]]:
    lines = []
    for item in items or []:
        product = item.get("product") or {}
        variant = item.get("variant") or {}
        lines.append(
            {
                "name": product.get("name") or item.get("name"),
                "sku": variant.get("sku"),
                "size": variant.get("size"),
                "color": variant.get("color"),
                "quantity": item.get("quantity"),
                "totalPrice": item.get("totalPrice"),
            }
        )
    return lines


def order_confirmation_request(order: Mapping[str, Any]) -> NotificationRequest:
    return NotificationRequest(
        recipients=order.get("customerEmail"),
        subject=f"Confirmación de Pedido #{order.get('orderNumber')} - Lovilike",
        kind=NotificationKind.ORDER_CONFIRMATION,
        payload={
            "orderNumber": order.get("orderNumber"),
            "customerName": order.get("customerName"),
            "createdAt": _json_date(order.get("createdAt")),
            "totalAmount": order.get("totalAmount"),
            "orderItems": _order_items(order.get("orderItems")),
            "shippingMethod": order.get("shippingMethod"),
            "shippingAddress": format_address(order.get("shippingAddress")),
        },
    )


def order_status_update_request(order: Mapping[str, Any]) -> NotificationRequest:
    """Status change email; unknown statuses get a generic message."""
    status = order.get("status")
    return NotificationRequest(
        recipients=order.get("customerEmail"),
        subject=f"Actualización de Pedido #{order.get('orderNumber')} - Lovilike",
        kind=NotificationKind.ORDER_STATUS_UPDATE,
        payload={
            "orderNumber": order.get("orderNumber"),
            "customerName": order.get("customerName"),
            "status": status,
            "statusMessage": ORDER_STATUS_MESSAGES.get(status, DEFAULT_STATUS_MESSAGE),
            "trackingNumber": order.get("trackingNumber"),
            "trackingUrl": order.get("trackingUrl"),
            "totalAmount": order.get("totalAmount"),
            "createdAt": _json_date(order.get("createdAt")),
        },
    )


def password_reset_request(
    user: Mapping[str, Any], token: str, app_url: Optional[str] = None
) -> NotificationRequest:
    if not token:
        raise ValueError("password reset requires a token")
    reset_link = f"{_app_url(app_url)}/auth/reset-password?{urlencode({'token': token})}"
    return NotificationRequest(
        recipients=user.get("email"),
        subject="Restablece tu Contraseña - Lovilike",
        kind=NotificationKind.PASSWORD_RESET,
        payload={"userName": user.get("name") or DEFAULT_USER_NAME, "resetLink": reset_link},
    )


def welcome_request(user: Mapping[str, Any]) -> NotificationRequest:
    return NotificationRequest(
        recipients=user.get("email"),
        subject="¡Bienvenido a Lovilike! 🎨",
        kind=NotificationKind.WELCOME,
        payload={"userName": user.get("name") or DEFAULT_USER_NAME},
    )


def email_verification_request(to: str, name: Optional[str], verification_url: str) -> NotificationRequest:
    if not verification_url:
        raise ValueError("email verification requires a verification URL")
    return NotificationRequest(
        recipients=to,
        subject="Verifica tu Email - Lovilike Personalizados",
        kind=NotificationKind.EMAIL_VERIFICATION,
        payload={"userName": name or DEFAULT_USER_NAME, "verificationUrl": verification_url},
    )
