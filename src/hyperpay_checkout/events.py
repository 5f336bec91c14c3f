"""Push channel carrying payment events to the host.

The channel has at most one listener. Attaching a new listener replaces the
previous one, and with no listener attached events are dropped. Listener
failures are logged and never reach the payment operation that emitted the
event.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from hyperpay_checkout.models import PaymentEvent

logger = logging.getLogger(__name__)

EventListener = Callable[[PaymentEvent], Any]


class EventChannel:
    """Single-consumer, fire-and-forget event channel.

    Example:
        channel = EventChannel()

        async def on_event(event: PaymentEvent):
            print(event.type, event.checkout_id)

        channel.attach(on_event)
        await channel.emit(PaymentEvent(PaymentEventType.PAYMENT_SUCCESS, "chk_1"))
    """

    def __init__(self) -> None:
        self._listener: Optional[EventListener] = None

    @property
    def has_listener(self) -> bool:
        return self._listener is not None

    def attach(self, listener: EventListener) -> None:
        """Attach a listener, replacing any current one."""
        if self._listener is not None and self._listener is not listener:
            logger.debug("Replacing existing event listener")
        self._listener = listener
        logger.debug("Event stream listener attached")

    def detach(self) -> None:
        self._listener = None
        logger.debug("Event stream listener detached")

    async def emit(self, event: PaymentEvent) -> bool:
        """Deliver an event to the current listener.

        Returns True when a listener accepted the event. Awaiting the
        listener keeps events for one checkout in emission order.
        """
        listener = self._listener
        if listener is None:
            logger.debug(f"No listener for {event.type.value} on {event.checkout_id}; dropped")
            return False

        try:
            result = listener(event)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            logger.error(
                f"Event listener failed for {event.type.value} on {event.checkout_id}",
                exc_info=True,
            )
            return False
        return True


class QueueListener:
    """Listener that buffers events on an asyncio.Queue.

    Useful for transport adapters that drain events in their own task.
    """

    def __init__(self, maxsize: int = 0):
        self.queue: asyncio.Queue[PaymentEvent] = asyncio.Queue(maxsize=maxsize)

    def __call__(self, event: PaymentEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Event queue full; dropping {event.type.value} for {event.checkout_id}")

    async def get(self, timeout: Optional[float] = None) -> PaymentEvent:
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)
