from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .channels import SmtpTransport, Transport
from .config import (
    DEFAULT_AFFECTED_SYSTEMS,
    DEFAULT_DELAY_RESOLUTION,
    DEFAULT_RECOMMENDED_ACTIONS,
    VALID_PRODUCTION_ALERT_TYPES,
    VALID_SEVERITIES,
    EmailSettings,
    get_settings,
)
from .dispatch import DispatchQueue, RetryPolicy
from .models import NotificationKind, NotificationRequest, Priority
from .service import send_notification
from .templates import TemplateResolver

LOGGER = logging.getLogger(__name__)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class AlertSystem:
    """Builds operational alerts and hands them to the dispatch queue.

    Each alert method enqueues exactly one request and returns without
    waiting for delivery. When ``loop`` is the loop that owns the queue,
    alerts raised from other threads (a sync web view, a worker thread) are
    handed over to it; otherwise they must come from a running loop.
    """

    def __init__(
        self,
        queue: DispatchQueue,
        default_recipients: Iterable[str] = (),
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.queue = queue
        self.default_recipients = list(default_recipients)
        self.loop = loop

    def _recipients(self, recipients: Optional[Sequence[str]]) -> List[str]:
        if isinstance(recipients, str):
            recipients = [recipients]
        resolved = list(recipients or self.default_recipients)
        if not resolved:
            raise ValueError("No recipients given and NOTIFY_ADMIN_EMAILS is not configured")
        return resolved

    def _submit(self, request: NotificationRequest) -> None:
        LOGGER.info("Queueing %s alert '%s' (%s priority)", request.kind.value, request.subject, request.priority.value)
        if self.loop is not None and _running_loop() is not self.loop:
            self.queue.enqueue_threadsafe(request, self.loop)
        else:
            self.queue.enqueue(request)

    def stock_alert(self, items: Sequence[Mapping[str, Any]], recipients: Optional[Sequence[str]] = None) -> None:
        items = list(items or [])
        if not items:
            raise ValueError("stock_alert requires at least one item")
        self._submit(
            NotificationRequest(
                recipients=self._recipients(recipients),
                subject=f"🚨 Alerta de Stock Crítico - {len(items)} productos afectados",
                kind=NotificationKind.STOCK_ALERT,
                payload={"items": [dict(item) for item in items]},
                priority=Priority.HIGH,
            )
        )

    def production_alert(
        self,
        order_ref: str,
        alert_type: str,
        message: str,
        recipients: Optional[Sequence[str]] = None,
        **extra: Any,
    ) -> None:
        """``extra`` carries optional payload fields such as productName or customerName."""
        normalized = str(alert_type).lower()
        if normalized not in VALID_PRODUCTION_ALERT_TYPES:
            raise ValueError(f"Unknown production alert type: {alert_type}")
        payload: Dict[str, Any] = {
            **extra,
            "productionOrder": order_ref,
            "alertType": normalized.upper(),
            "message": message,
        }
        if normalized == "delay":
            payload.setdefault("estimatedResolution", DEFAULT_DELAY_RESOLUTION)
        self._submit(
            NotificationRequest(
                recipients=self._recipients(recipients),
                subject=f"🏭 Alerta de Producción - {order_ref}",
                kind=NotificationKind.PRODUCTION_ALERT,
                payload=payload,
                priority=Priority.HIGH if normalized == "error" else Priority.NORMAL,
            )
        )

    def system_alert(
        self,
        alert_type: str,
        description: str,
        severity: str,
        recipients: Optional[Sequence[str]] = None,
        *,
        metrics: Optional[Mapping[str, Any]] = None,
        affected_systems: Optional[Sequence[str]] = None,
        recommended_actions: Optional[Sequence[str]] = None,
    ) -> None:
        severity = str(severity).lower()
        if severity not in VALID_SEVERITIES:
            raise ValueError(f"Unknown severity: {severity}")
        payload: Dict[str, Any] = {
            "alertType": alert_type,
            "description": description,
            "severity": severity,
            "affectedSystems": list(affected_systems or DEFAULT_AFFECTED_SYSTEMS),
            "recommendedActions": list(recommended_actions or DEFAULT_RECOMMENDED_ACTIONS),
        }
        if metrics:
            payload["metrics"] = dict(metrics)
        self._submit(
            NotificationRequest(
                recipients=self._recipients(recipients),
                subject=f"🚨 Alerta del Sistema - {alert_type}",
                kind=NotificationKind.ADMIN_ALERT,
                payload=payload,
                priority=Priority.HIGH if severity == "critical" else Priority.NORMAL,
            )
        )


def build_alert_system(
    transport: Optional[Transport] = None,
    settings: Optional[EmailSettings] = None,
    resolver: Optional[TemplateResolver] = None,
    retry: Optional[RetryPolicy] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> AlertSystem:
    """Wire a queue, transport and resolver together.

    Built inside a running loop, the system binds to that loop so sync
    callers in other threads can raise alerts too.
    """
    settings = settings or get_settings()
    transport = transport or SmtpTransport(settings)
    resolver = resolver or TemplateResolver(app_url=settings.app_url)
    queue = DispatchQueue(
        partial(send_notification, transport=transport, resolver=resolver),
        send_delay=settings.send_delay,
        retry=retry,
    )
    return AlertSystem(queue, default_recipients=settings.admin_recipients, loop=loop or _running_loop())


_alert_system: Optional[AlertSystem] = None


def init_alert_system(**kwargs: Any) -> AlertSystem:
    """Create the process-wide alert system; call once at application start."""
    global _alert_system
    _alert_system = build_alert_system(**kwargs)
    return _alert_system


def get_alert_system() -> AlertSystem:
    if _alert_system is None:
        return init_alert_system()
    return _alert_system


async def shutdown_alert_system(drain: bool = True) -> None:
    global _alert_system
    if _alert_system is None:
        return
    system, _alert_system = _alert_system, None
    await system.queue.shutdown(drain=drain)
