"""Fire-and-forget dispatch of question deliveries.

The question POST has already produced its 201 by the time delivery finishes;
the task result is observed only by a done-callback that logs it. Looking up
the recipient's chat identity happens inside the task as well.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import replace
from functools import partial

import structlog

from hitl_relay.outbound.notifier import Notifier, QuestionDelivery, SendResult

logger = structlog.get_logger(__name__)

TargetResolver = Callable[[str | None], Awaitable[str | None]]


class OutboundDispatcher:
    def __init__(self, notifier: Notifier):
        self.notifier = notifier
        # Strong references so pending tasks are not garbage collected
        self._tasks: set[asyncio.Task] = set()

    def dispatch_question(
        self,
        delivery: QuestionDelivery,
        resolve_target: TargetResolver | None = None,
    ) -> asyncio.Task | None:
        """Schedule delivery in the background. Returns the task, or None when disabled.

        ``resolve_target`` maps ``delivery.target_user_id`` to the chat identity
        and is awaited inside the task, never by the caller.
        """
        if not self.notifier.enabled:
            logger.info("sender_disabled", session_id=delivery.session_id, message_id=delivery.message_id)
            return None

        task = asyncio.create_task(self._deliver(delivery, resolve_target))
        self._tasks.add(task)
        task.add_done_callback(partial(self._on_done, delivery))
        return task

    async def _deliver(self, delivery: QuestionDelivery, resolve_target: TargetResolver | None) -> SendResult:
        if resolve_target is not None:
            delivery = replace(delivery, channel_user_key=await resolve_target(delivery.target_user_id))
        return await self.notifier.send_question(delivery)

    def _on_done(self, delivery: QuestionDelivery, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        log = logger.bind(session_id=delivery.session_id, message_id=delivery.message_id)

        if task.cancelled():
            log.warning("send_cancelled")
            return

        exc = task.exception()
        if exc is not None:
            log.error("send_failed", error=str(exc), error_type=type(exc).__name__)
            return

        result: SendResult = task.result()
        if result.ok:
            log.info("question_delivered", provider_message_id=result.provider_message_id)
        else:
            log.error("send_failed", error_code=result.error_code, error=result.error_message)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


_dispatcher: OutboundDispatcher | None = None


def init_dispatcher(dispatcher: OutboundDispatcher) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def get_dispatcher() -> OutboundDispatcher:
    """Return the process-wide dispatcher.

    Raises RuntimeError if init_dispatcher() has not been called.
    """
    if _dispatcher is None:
        raise RuntimeError("Outbound dispatcher not initialized. Call init_dispatcher() first.")
    return _dispatcher
