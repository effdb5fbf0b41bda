from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

from .channels import Transport
from .models import BulkResult, DeliveryResult, NotificationRequest, OutboundEmail, RenderedMessage
from .templates import TemplateResolver

LOGGER = logging.getLogger(__name__)


def compose(request: NotificationRequest, rendered: RenderedMessage) -> OutboundEmail:
    """Combine a request with its rendered content; the request subject wins."""
    return OutboundEmail(
        to=list(request.recipients),
        subject=request.subject or rendered.subject,
        body_html=rendered.body_html,
        body_text=rendered.body_text,
        attachments=list(request.attachments),
        priority=request.priority,
    )


async def send_notification(
    request: NotificationRequest,
    transport: Transport,
    resolver: TemplateResolver,
) -> DeliveryResult:
    """Render and send one request.

    ``TemplateNotFoundError`` propagates so a malformed message is never sent.
    """
    rendered = resolver.render(request.kind, request.payload)
    return await transport.send(compose(request, rendered))


async def _gather(batch: List[NotificationRequest], transport: Transport, resolver: TemplateResolver) -> list:
    return await asyncio.gather(
        *(send_notification(request, transport, resolver) for request in batch),
        return_exceptions=True,
    )


def _kind_label(request: NotificationRequest) -> str:
    return getattr(request.kind, "value", str(request.kind))


async def dispatch_bulk(
    requests: Iterable[NotificationRequest],
    transport: Transport,
    resolver: Optional[TemplateResolver] = None,
) -> BulkResult:
    """Send every request concurrently and tally the outcomes.

    All sends are started at once and awaited together; one failure never
    cancels the others. Raised exceptions and falsy results both count as
    failures.
    """
    resolver = resolver or TemplateResolver()
    batch = list(requests)
    dedicated = getattr(transport, "dedicated", None)
    if dedicated is None:
        outcomes = await _gather(batch, transport, resolver)
    else:
        # blocking transports get one thread per message for this batch
        with dedicated(len(batch)) as batch_transport:
            outcomes = await _gather(batch, batch_transport, resolver)

    result = BulkResult()
    for request, outcome in zip(batch, outcomes):
        if isinstance(outcome, BaseException):
            LOGGER.error(
                "Bulk send of %s '%s' to %s raised: %s",
                _kind_label(request),
                request.subject,
                ", ".join(request.recipients),
                outcome,
            )
            result.failed += 1
        elif outcome:
            result.success += 1
        else:
            result.failed += 1
    LOGGER.info("Bulk email results: %d success, %d failed", result.success, result.failed)
    return result
