"""Template resolver: maps a notification kind and payload to rendered content."""
from __future__ import annotations

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping, Union

import jinja2
from markupsafe import Markup

from .models import NotificationKind, RenderedMessage

TEMPLATE_DIR = Path(__file__).parent / "templates"
CURRENCY_SYMBOL = "€"
CENT = Decimal("0.01")


class TemplateNotFoundError(LookupError):
    """Raised when a notification kind has no template."""


def format_currency(value: Any) -> str:
    """Format an amount as ``€123.40``; missing or non-numeric values render empty."""
    if value is None or isinstance(value, jinja2.Undefined) or value == "":
        return ""
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            return ""
        # Halves round away from zero, like the storefront prices.
        amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return ""
    return f"{CURRENCY_SYMBOL}{amount}"


def format_date(value: Any) -> str:
    """Day/month/year without zero padding, as the es-ES locale prints dates."""
    if value is None or isinstance(value, jinja2.Undefined) or value == "":
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, (date, datetime)):
        return f"{value.day}/{value.month}/{value.year}"
    return str(value)


def _template_name(kind: NotificationKind) -> str:
    return f"{kind.value.lower()}.html"


class TemplateResolver:
    """Renders notification templates from ``notifications/templates``.

    Rendering is side-effect free: the same kind and payload always produce
    the same output. Payload fields that a template references but the caller
    did not supply render as empty strings.
    """

    def __init__(self, app_url: str = "", template_dir: Union[str, Path, None] = None) -> None:
        self.app_url = app_url.rstrip("/")
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            autoescape=jinja2.select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["currency"] = format_currency
        self.env.filters["es_date"] = format_date
        self.env.globals["app_url"] = self.app_url

    def _load(self, kind: Any) -> jinja2.Template:
        try:
            kind = NotificationKind(kind)
        except ValueError:
            raise TemplateNotFoundError(f"Template not found for email type: {kind}") from None
        try:
            return self.env.get_template(_template_name(kind))
        except jinja2.TemplateNotFound:
            raise TemplateNotFoundError(f"Template not found for email type: {kind.value}") from None

    def render(self, kind: Any, payload: Mapping[str, Any]) -> RenderedMessage:
        template = self._load(kind)
        data = dict(payload)
        context = template.new_context({"data": data})
        subject = Markup("".join(template.blocks["title"](context))).striptags()
        content = "".join(template.blocks["content"](context))
        body_html = template.render(data=data)
        return RenderedMessage(subject=subject, body_html=body_html, body_text=html_to_text(content))


_BLOCK_BREAK = re.compile(r"<br\s*/?>|</(?:p|h[1-6]|li|tr|div|table|ul)>", re.IGNORECASE)


def html_to_text(html: str) -> str:
    """Plain-text rendition of a template body, one line per block element."""
    lines = (Markup(chunk).striptags() for chunk in _BLOCK_BREAK.split(html))
    return "\n".join(line for line in lines if line)
