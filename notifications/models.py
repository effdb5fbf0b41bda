from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union


class NotificationKind(str, Enum):
    """Closed set of message types the dispatch layer can render."""

    ORDER_CONFIRMATION = "ORDER_CONFIRMATION"
    ORDER_STATUS_UPDATE = "ORDER_STATUS_UPDATE"
    PRODUCTION_ALERT = "PRODUCTION_ALERT"
    STOCK_ALERT = "STOCK_ALERT"
    PAYMENT_CONFIRMATION = "PAYMENT_CONFIRMATION"
    SHIPPING_NOTIFICATION = "SHIPPING_NOTIFICATION"
    QUALITY_ISSUE = "QUALITY_ISSUE"
    CUSTOMER_NOTIFICATION = "CUSTOMER_NOTIFICATION"
    ADMIN_ALERT = "ADMIN_ALERT"
    SYSTEM_NOTIFICATION = "SYSTEM_NOTIFICATION"
    WELCOME = "WELCOME"
    PASSWORD_RESET = "PASSWORD_RESET"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class FailureKind(str, Enum):
    AUTH = "auth"
    CONNECTIVITY = "connectivity"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


RETRYABLE_FAILURES = {FailureKind.CONNECTIVITY, FailureKind.TIMEOUT}


@dataclass(slots=True)
class Attachment:
    filename: str
    content: Union[bytes, str]
    content_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        raw = self.content.encode("utf-8") if isinstance(self.content, str) else self.content
        return {
            "filename": self.filename,
            "content": base64.b64encode(raw).decode("ascii"),
            "content_type": self.content_type,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Attachment":
        return cls(
            filename=data["filename"],
            content=base64.b64decode(data["content"]),
            content_type=data.get("content_type"),
        )


@dataclass(slots=True)
class NotificationRequest:
    """A single notification to render and deliver.

    ``payload`` is a free-form mapping whose fields depend on ``kind``; it is
    not validated here, the templates read what they need from it.
    """

    recipients: Sequence[str]
    subject: str
    kind: NotificationKind
    payload: Mapping[str, Any] = field(default_factory=dict)
    priority: Priority = Priority.NORMAL
    attachments: List[Attachment] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.recipients, str):
            self.recipients = [self.recipients]
        self.recipients = [r for r in self.recipients or [] if r]
        if not self.recipients:
            raise ValueError("NotificationRequest requires at least one recipient")
        # Unknown kind strings are kept as-is so the resolver reports them.
        try:
            self.kind = NotificationKind(self.kind)
        except ValueError:
            pass
        self.priority = Priority(self.priority)

    def to_dict(self) -> Dict[str, Any]:
        kind = self.kind.value if isinstance(self.kind, NotificationKind) else str(self.kind)
        return {
            "recipients": list(self.recipients),
            "subject": self.subject,
            "kind": kind,
            "payload": dict(self.payload),
            "priority": self.priority.value,
            "attachments": [attachment.to_dict() for attachment in self.attachments],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NotificationRequest":
        return cls(
            recipients=data.get("recipients") or [],
            subject=data.get("subject", ""),
            kind=data["kind"],
            payload=data.get("payload") or {},
            priority=data.get("priority") or Priority.NORMAL,
            attachments=[Attachment.from_dict(a) for a in data.get("attachments") or []],
        )


@dataclass(slots=True)
class RenderedMessage:
    """Output of the template resolver."""

    subject: str
    body_html: str
    body_text: str


@dataclass(slots=True)
class OutboundEmail:
    """Fully rendered message handed to a transport."""

    to: Sequence[str]
    subject: str
    body_html: str
    body_text: str
    attachments: List[Attachment] = field(default_factory=list)
    priority: Priority = Priority.NORMAL


@dataclass(slots=True)
class DeliveryResult:
    """Outcome of one transport send. Truthy when the message was accepted."""

    ok: bool
    message_id: Optional[str] = None
    failure: Optional[FailureKind] = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.ok

    @property
    def retryable(self) -> bool:
        return not self.ok and self.failure in RETRYABLE_FAILURES

    @classmethod
    def delivered(cls, message_id: Optional[str] = None, detail: str = "") -> "DeliveryResult":
        return cls(ok=True, message_id=message_id, detail=detail)

    @classmethod
    def failed(cls, failure: FailureKind, detail: str = "") -> "DeliveryResult":
        return cls(ok=False, failure=failure, detail=detail)


@dataclass(slots=True)
class BulkResult:
    success: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.success + self.failed

    def as_dict(self) -> Dict[str, int]:
        return {"success": self.success, "failed": self.failed}
