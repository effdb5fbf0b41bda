import asyncio
import time
from functools import partial

import pytest

from notifications.dispatch import DispatchQueue, RetryPolicy
from notifications.models import DeliveryResult, FailureKind, NotificationKind, NotificationRequest
from notifications.service import send_notification
from notifications.templates import TemplateResolver


def _request(subject, kind=NotificationKind.STOCK_ALERT):
    return NotificationRequest(
        recipients=["ops@lovilike.com"],
        subject=subject,
        kind=kind,
        payload={"items": [{"name": subject, "sku": subject, "currentStock": 1, "minimumStock": 5}]},
    )


class RecordingSender:
    """Async sender double; ``outcomes`` maps a subject to the results returned on successive calls."""

    def __init__(self, outcomes=None):
        self.calls = []
        self.outcomes = {key: list(value) for key, value in (outcomes or {}).items()}

    async def __call__(self, request):
        self.calls.append((request.subject, time.monotonic()))
        queued = self.outcomes.get(request.subject)
        outcome = queued.pop(0) if queued else DeliveryResult.delivered(f"<{request.subject}@test>")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    @property
    def subjects(self):
        return [subject for subject, _ in self.calls]


class RecordingTransport:
    def __init__(self):
        self.sent = []

    async def send(self, email):
        self.sent.append(email)
        return DeliveryResult.delivered("<id@test>")


def test_queue_sends_in_fifo_order_and_returns_to_idle():
    sender = RecordingSender()

    async def scenario():
        queue = DispatchQueue(sender, send_delay=0)
        for subject in ("A", "B", "C"):
            queue.enqueue(_request(subject))
        assert queue.is_processing
        await queue.join()
        return queue

    queue = asyncio.run(scenario())

    assert sender.subjects == ["A", "B", "C"]
    assert not queue.is_processing
    assert len(queue) == 0
    assert queue.sent == 3
    assert queue.failed == 0


def test_each_item_is_attempted_exactly_once():
    sender = RecordingSender(
        outcomes={
            "B": [False],
            "C": [DeliveryResult.failed(FailureKind.CONNECTIVITY, "refused")],
        }
    )

    async def scenario():
        queue = DispatchQueue(sender, send_delay=0)
        for subject in ("A", "B", "C"):
            queue.enqueue(_request(subject))
        await queue.join()
        return queue

    queue = asyncio.run(scenario())

    assert sender.subjects == ["A", "B", "C"]
    assert queue.sent == 1
    assert queue.failed == 2


def test_bad_template_does_not_stop_the_queue():
    transport = RecordingTransport()
    sender = partial(send_notification, transport=transport, resolver=TemplateResolver())

    async def scenario():
        queue = DispatchQueue(sender, send_delay=0)
        queue.enqueue(_request("A"))
        queue.enqueue(_request("B", kind="NOT_A_KIND"))
        queue.enqueue(_request("C"))
        await queue.join()
        return queue

    queue = asyncio.run(scenario())

    assert [email.subject for email in transport.sent] == ["A", "C"]
    assert queue.failed == 1
    assert not queue.is_processing


def test_sender_exception_is_isolated_per_item():
    sender = RecordingSender(outcomes={"A": [RuntimeError("boom")]})

    async def scenario():
        queue = DispatchQueue(sender, send_delay=0)
        queue.enqueue(_request("A"))
        queue.enqueue(_request("B"))
        await queue.join()
        return queue

    queue = asyncio.run(scenario())

    assert sender.subjects == ["A", "B"]
    assert queue.sent == 1
    assert not queue.is_processing


def test_enqueue_after_drain_starts_a_new_cycle():
    sender = RecordingSender()

    async def scenario():
        queue = DispatchQueue(sender, send_delay=0)
        queue.enqueue(_request("first"))
        await queue.join()
        assert not queue.is_processing

        queue.enqueue(_request("second"))
        assert queue.is_processing
        await queue.join()
        return queue

    queue = asyncio.run(scenario())

    assert sender.subjects == ["first", "second"]
    assert not queue.is_processing


def test_sends_are_paced_by_the_delay():
    sender = RecordingSender()
    delay = 0.05

    async def scenario():
        queue = DispatchQueue(sender, send_delay=delay)
        for subject in ("A", "B", "C"):
            queue.enqueue(_request(subject))
        await queue.join()

    asyncio.run(scenario())

    stamps = [stamp for _, stamp in sender.calls]
    gaps = [later - earlier for earlier, later in zip(stamps, stamps[1:])]
    assert len(gaps) == 2
    assert all(gap >= delay * 0.9 for gap in gaps)


def test_retry_policy_retries_retryable_failures():
    sender = RecordingSender(outcomes={"A": [DeliveryResult.failed(FailureKind.TIMEOUT)]})

    async def scenario():
        queue = DispatchQueue(sender, send_delay=0, retry=RetryPolicy(max_attempts=3, base_delay=0))
        queue.enqueue(_request("A"))
        await queue.join()
        return queue

    queue = asyncio.run(scenario())

    assert sender.subjects == ["A", "A"]
    assert queue.sent == 1


def test_retry_policy_skips_permanent_failures():
    sender = RecordingSender(outcomes={"A": [DeliveryResult.failed(FailureKind.AUTH)]})

    async def scenario():
        queue = DispatchQueue(sender, send_delay=0, retry=RetryPolicy(max_attempts=3, base_delay=0))
        queue.enqueue(_request("A"))
        await queue.join()
        return queue

    queue = asyncio.run(scenario())

    assert sender.subjects == ["A"]
    assert queue.failed == 1


def test_retry_delay_backs_off_exponentially():
    policy = RetryPolicy(max_attempts=4, base_delay=1.5)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.5, 3.0, 6.0]


def test_shutdown_without_drain_drops_pending():
    sender = RecordingSender()

    async def scenario():
        queue = DispatchQueue(sender, send_delay=10)
        for subject in ("A", "B", "C"):
            queue.enqueue(_request(subject))
        await asyncio.sleep(0)
        await queue.shutdown(drain=False)
        return queue

    queue = asyncio.run(scenario())

    assert sender.subjects == ["A"]
    assert len(queue) == 0
    assert not queue.is_processing


def test_shutdown_with_drain_waits_for_pending():
    sender = RecordingSender()

    async def scenario():
        queue = DispatchQueue(sender, send_delay=0)
        queue.enqueue(_request("A"))
        queue.enqueue(_request("B"))
        await queue.shutdown()
        return queue

    queue = asyncio.run(scenario())

    assert sender.subjects == ["A", "B"]
    assert not queue.is_processing


def test_enqueue_while_pacing_reuses_the_running_consumer():
    sender = RecordingSender()
    delay = 0.05

    async def scenario():
        queue = DispatchQueue(sender, send_delay=delay)
        queue.enqueue(_request("A"))
        worker = queue._worker
        # let A go out; the consumer is now sleeping between sends
        await asyncio.sleep(delay / 5)
        assert sender.subjects == ["A"]

        queue.enqueue(_request("B"))
        assert queue._worker is worker
        await queue.join()
        assert worker.done()
        return queue

    queue = asyncio.run(scenario())

    assert sender.subjects == ["A", "B"]
    assert queue.sent == 2
    (_, first), (_, second) = sender.calls
    assert second - first >= delay * 0.9


def test_enqueue_outside_a_loop_queues_nothing():
    queue = DispatchQueue(RecordingSender(), send_delay=0)

    with pytest.raises(RuntimeError):
        queue.enqueue(_request("A"))

    assert len(queue) == 0
    assert not queue.is_processing


def test_enqueue_threadsafe_hands_request_to_owning_loop():
    sender = RecordingSender()

    async def scenario():
        loop = asyncio.get_running_loop()
        queue = DispatchQueue(sender, send_delay=0)
        await asyncio.to_thread(queue.enqueue_threadsafe, _request("from-thread"), loop)
        await asyncio.sleep(0)
        await queue.join()
        return queue

    queue = asyncio.run(scenario())

    assert sender.subjects == ["from-thread"]
    assert queue.sent == 1
    assert not queue.is_processing


def test_enqueue_threadsafe_rejects_closed_loop():
    loop = asyncio.new_event_loop()
    loop.close()
    queue = DispatchQueue(RecordingSender(), send_delay=0)

    with pytest.raises(RuntimeError):
        queue.enqueue_threadsafe(_request("late"), loop)
    assert len(queue) == 0
