import asyncio
from datetime import datetime

import pytest

from notifications import config, customer
from notifications.models import DeliveryResult, NotificationKind, NotificationRequest
from notifications.service import send_notification
from notifications.templates import TemplateResolver

ORDER = {
    "id": "ord_1",
    "orderNumber": "LV-2041",
    "customerEmail": "ana@example.com",
    "customerName": "Ana",
    "createdAt": datetime(2024, 3, 5, 10, 30),
    "totalAmount": 42.5,
    "status": "SHIPPED",
    "trackingNumber": "ES123456789",
    "shippingMethod": "Envío estándar",
    "shippingAddress": {"street": "Calle Mayor 3", "city": "Hellín", "state": "Albacete", "postalCode": "02400"},
    "orderItems": [
        {
            "product": {"name": "Taza personalizada"},
            "variant": {"sku": "MUG-W", "size": "330ml", "color": "Blanco"},
            "quantity": 2,
            "totalPrice": 25,
        },
        {"product": {"name": "Llavero de madera"}, "quantity": 1, "totalPrice": 17.5},
    ],
}


class RecordingTransport:
    def __init__(self):
        self.sent = []

    async def send(self, email):
        self.sent.append(email)
        return DeliveryResult.delivered("<customer@test>")


def _render(request):
    transport = RecordingTransport()
    resolver = TemplateResolver(app_url="https://lovilike.es")
    assert asyncio.run(send_notification(request, transport, resolver))
    return transport.sent[0]


def test_order_confirmation_lists_items_and_address():
    request = customer.order_confirmation_request(ORDER)

    assert request.recipients == ["ana@example.com"]
    assert request.kind is NotificationKind.ORDER_CONFIRMATION
    assert request.subject == "Confirmación de Pedido #LV-2041 - Lovilike"
    assert request.payload["createdAt"] == "2024-03-05T10:30:00"
    assert request.payload["shippingAddress"] == "Calle Mayor 3, Hellín, Albacete, 02400"

    email = _render(request)
    assert "Taza personalizada" in email.body_html
    assert "SKU: MUG-W | 330ml | Blanco" in email.body_html
    assert "Cantidad: 2" in email.body_html
    assert "€17.50" in email.body_html
    assert "€42.50" in email.body_html
    assert "5/3/2024" in email.body_html
    assert "Calle Mayor 3, Hellín, Albacete, 02400" in email.body_html


def test_order_confirmation_payload_is_json_safe():
    request = customer.order_confirmation_request(ORDER)

    assert NotificationRequest.from_dict(request.to_dict()) == request


@pytest.mark.parametrize(
    "address, expected",
    [
        ("Plaza de la Iglesia 1, Hellín", "Plaza de la Iglesia 1, Hellín"),
        (None, "Dirección no especificada"),
        ({}, "Dirección no especificada"),
        ({"street": "Calle Sol 9", "city": "Albacete"}, "Calle Sol 9, Albacete"),
    ],
)
def test_format_address(address, expected):
    assert customer.format_address(address) == expected


@pytest.mark.parametrize(
    "status, message",
    [
        ("SHIPPED", "Tu pedido ha sido enviado y está en camino."),
        ("READY_FOR_PICKUP", "Tu pedido está listo para recoger en nuestra tienda."),
        ("ON_HOLD", "Estado actualizado"),
    ],
)
def test_order_status_update_message(status, message):
    request = customer.order_status_update_request({**ORDER, "status": status})

    assert request.subject == "Actualización de Pedido #LV-2041 - Lovilike"
    assert request.payload["statusMessage"] == message
    assert message in _render(request).body_html


def test_order_status_update_shows_tracking_and_summary():
    email = _render(customer.order_status_update_request(ORDER))

    assert "ES123456789" in email.body_html
    assert "Resumen del pedido" in email.body_html
    assert "€42.50" in email.body_html


def test_password_reset_builds_link_from_token():
    request = customer.password_reset_request(
        {"email": "luis@example.com"}, "abc+123/=", app_url="https://lovilike.es/"
    )

    assert request.payload == {
        "userName": "Usuario",
        "resetLink": "https://lovilike.es/auth/reset-password?token=abc%2B123%2F%3D",
    }
    email = _render(request)
    assert email.subject == "Restablece tu Contraseña - Lovilike"
    assert "Hola <strong>Usuario</strong>" in email.body_html


def test_password_reset_uses_configured_app_url(monkeypatch):
    settings = config.EmailSettings(app_url="https://tienda.lovilike.es")
    monkeypatch.setattr(customer, "get_settings", lambda: settings)

    request = customer.password_reset_request({"email": "luis@example.com", "name": "Luis"}, "t0k3n")

    assert request.payload["resetLink"] == "https://tienda.lovilike.es/auth/reset-password?token=t0k3n"
    assert request.payload["userName"] == "Luis"


def test_password_reset_requires_token():
    with pytest.raises(ValueError):
        customer.password_reset_request({"email": "luis@example.com"}, "")


def test_welcome_defaults_name_and_links_to_shop():
    request = customer.welcome_request({"email": "marta@example.com", "name": None})

    assert request.kind is NotificationKind.WELCOME
    assert request.subject == "¡Bienvenido a Lovilike! 🎨"
    email = _render(request)
    assert "Hola <strong>Usuario</strong>" in email.body_html
    assert "https://lovilike.es/productos" in email.body_html


def test_email_verification_request():
    url = "https://lovilike.es/auth/verify?token=xyz"
    request = customer.email_verification_request("eva@example.com", "Eva", url)

    assert request.kind is NotificationKind.EMAIL_VERIFICATION
    email = _render(request)
    assert email.subject == "Verifica tu Email - Lovilike Personalizados"
    assert email.body_html.count(url) == 2
    assert "24 horas" in email.body_text


def test_customer_requests_need_an_address():
    with pytest.raises(ValueError):
        customer.welcome_request({"name": "Sin email"})
    with pytest.raises(ValueError):
        customer.order_confirmation_request({"orderNumber": "LV-1"})
