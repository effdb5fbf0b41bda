from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from celery import shared_task

from .channels import SmtpTransport
from .config import get_settings
from .models import NotificationRequest
from .service import dispatch_bulk, send_notification
from .templates import TemplateResolver

LOGGER = logging.getLogger(__name__)


def _transport() -> SmtpTransport:
    return SmtpTransport(get_settings())


def _resolver() -> TemplateResolver:
    return TemplateResolver(app_url=get_settings().app_url)


@shared_task(name="notifications.tasks.send_notification")
def send_notification_task(payload: Dict) -> bool:
    request = NotificationRequest.from_dict(payload)
    result = asyncio.run(send_notification(request, _transport(), _resolver()))
    return bool(result)


@shared_task(name="notifications.tasks.send_bulk_notifications")
def send_bulk_notifications(payload: List[Dict]) -> Dict[str, int]:
    requests = [NotificationRequest.from_dict(item) for item in payload]
    result = asyncio.run(dispatch_bulk(requests, _transport(), _resolver()))
    LOGGER.info("Bulk task processed %d notifications", result.total)
    return result.as_dict()


@shared_task(name="notifications.tasks.verify_transport")
def verify_transport() -> bool:
    return _transport().verify()


def schedule_notification(request: NotificationRequest, delay_minutes: Optional[float] = None):
    """Hand ``request`` to a worker, optionally after ``delay_minutes``."""
    if delay_minutes and delay_minutes > 0:
        LOGGER.info("Email queued for %s minutes: %s", delay_minutes, request.subject)
        return send_notification_task.apply_async(args=[request.to_dict()], countdown=delay_minutes * 60)
    return send_notification_task.apply_async(args=[request.to_dict()])
