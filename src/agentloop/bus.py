"""Point-to-point and broadcast message routing between workers.

``task_request`` messages addressed to a registered worker are executed
synchronously (under a per-call timeout) and answered with a
``task_response`` sent back to the original sender. Every message lands in
a bounded history buffer that exists purely for inspection.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any

from agentloop.errors import WorkerNotFoundError
from agentloop.invoke import invoke_safely, invoke_with_timeout
from agentloop.registry import WorkerRegistry
from agentloop.sinks import BackgroundEmitter, StatusSink
from agentloop.types import (
    BROADCAST,
    Message,
    MessageKind,
    TaskPriority,
    WorkerResult,
)

logger = logging.getLogger(__name__)

Subscriber = Callable[[Message], Any]


class CommunicationBus:
    """Synchronous message router with a bounded history ring buffer."""

    def __init__(
        self,
        registry: WorkerRegistry,
        *,
        history_size: int = 200,
        call_timeout: float = 10.0,
        status_sink: StatusSink | None = None,
        emitter: BackgroundEmitter | None = None,
    ) -> None:
        self._registry = registry
        self.call_timeout = call_timeout
        self._history: deque[Message] = deque(maxlen=max(1, history_size))
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._status_sink = status_sink
        self._emitter = emitter or BackgroundEmitter()
        self._total_messages = 0

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def send(self, message: Message) -> Message | None:
        """Record and route *message*.

        Returns the ``task_response`` produced for a routed ``task_request``,
        otherwise ``None``.
        """
        logger.debug("Message %s: %s -> %s", message.kind, message.sender, message.recipient)
        self._history.append(message)
        self._total_messages += 1
        self._notify_subscribers(message)

        if message.kind != MessageKind.TASK_REQUEST:
            return None
        target = self._registry.get(message.recipient)
        if target is None or target.handler is None:
            logger.debug("No handler for %s; task_request not routed", message.recipient)
            return None

        self._narrate(f"AgentBus: Routing {message.kind} from {message.sender} to {message.recipient}")
        context = {"input": message.payload, "sender": message.sender, "message_id": message.id}
        result, exc = await invoke_safely(target, context, self.call_timeout)
        if exc is not None:
            logger.warning("Bus call to %s failed: %s", message.recipient, exc)

        response = Message(
            sender=message.recipient,
            recipient=message.sender,
            kind=MessageKind.TASK_RESPONSE,
            payload=result,
            priority=message.priority,
        )
        await self.send(response)
        return response

    async def broadcast(
        self,
        kind: MessageKind | str,
        payload: Any,
        recipients: Iterable[str],
        *,
        sender: str = "SystemMonitor",
        priority: TaskPriority | str = TaskPriority.MEDIUM,
    ) -> list[Message]:
        """Send one message per recipient, in order.

        Delivery is not atomic: a recipient whose send fails is logged and
        skipped, and the returned list holds only delivered messages.
        """
        delivered: list[Message] = []
        for recipient in recipients:
            message = Message(
                sender=sender,
                recipient=recipient,
                kind=MessageKind(kind),
                payload=payload,
                priority=TaskPriority(priority),
            )
            try:
                await self.send(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Broadcast to %s failed: %s", recipient, exc)
                continue
            delivered.append(message)
        return delivered

    async def broadcast_error_alert(
        self,
        error_info: dict[str, Any],
        recipients: Iterable[str],
    ) -> list[Message]:
        """Emergency ``error_alert`` to the registered workers among *recipients*."""
        targets = [r for r in recipients if r in self._registry]
        self._narrate(f"Broadcasting error alert to {len(targets)} workers: {error_info.get('type', 'unknown')}")
        self._history.append(
            Message(
                sender="SystemMonitor",
                recipient=BROADCAST,
                kind=MessageKind.ERROR_ALERT,
                payload=error_info,
                priority=TaskPriority.EMERGENCY,
            )
        )
        return await self.broadcast(
            MessageKind.ERROR_ALERT,
            error_info,
            targets,
            priority=TaskPriority.EMERGENCY,
        )

    async def coordinate_error_fixing(
        self,
        errors: list[Any],
        fixers: list[str],
    ) -> list[Message]:
        """Distribute *errors* round-robin over *fixers* as high-priority task requests.

        Returns the responses that came back.
        """
        if not fixers:
            return []
        self._narrate(f"Coordinating {len(errors)} error-fixing tasks across {len(fixers)} workers")
        responses: list[Message] = []
        for i, error in enumerate(errors):
            response = await self.send(
                Message(
                    sender="ErrorCoordinator",
                    recipient=fixers[i % len(fixers)],
                    kind=MessageKind.TASK_REQUEST,
                    payload={"error": error, "urgency": "high"},
                    priority=TaskPriority.HIGH,
                )
            )
            if response is not None:
                responses.append(response)
        return responses

    async def coordinate_handoff(
        self,
        from_worker: str,
        to_worker: str,
        previous_output: str,
        context: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> WorkerResult:
        """Hand prior output from *from_worker* to *to_worker* and run it.

        Raises :class:`WorkerNotFoundError` if *to_worker* is not registered,
        and propagates timeouts and handler errors to the caller.
        """
        target = self._registry.require(to_worker)
        if target.handler is None:
            raise WorkerNotFoundError(to_worker)

        handoff_data = {
            **(context or {}),
            "handoff": True,
            "from_worker": from_worker,
            "previous_output": previous_output,
        }
        self._history.append(
            Message(
                sender=from_worker,
                recipient=to_worker,
                kind=MessageKind.COLLABORATION,
                payload=handoff_data,
            )
        )
        self._total_messages += 1
        result = await invoke_with_timeout(target, handoff_data, timeout or self.call_timeout)
        self._history.append(
            Message(
                sender=to_worker,
                recipient=from_worker,
                kind=MessageKind.TASK_RESPONSE,
                payload=result,
            )
        )
        self._total_messages += 1
        return result

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, worker: str, callback: Subscriber) -> None:
        self._subscribers.setdefault(worker, []).append(callback)

    def unsubscribe(self, worker: str, callback: Subscriber) -> None:
        callbacks = self._subscribers.get(worker, [])
        self._subscribers[worker] = [cb for cb in callbacks if cb is not callback]

    def _notify_subscribers(self, message: Message) -> None:
        for cb in list(self._subscribers.get(message.recipient, [])):
            try:
                cb(message)
            except Exception as exc:
                logger.debug("Bus subscriber error: %s", exc)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def history(self, worker: str | None = None) -> list[Message]:
        if worker is None:
            return list(self._history)
        return [m for m in self._history if m.sender == worker or m.recipient == worker]

    def recent(self, n: int = 10) -> list[Message]:
        return list(self._history)[-n:]

    def stats(self) -> dict[str, Any]:
        return {
            "total_messages": self._total_messages,
            "buffered_messages": len(self._history),
            "registered_workers": len(self._registry),
            "subscriptions": sum(1 for cbs in self._subscribers.values() if cbs),
        }

    def _narrate(self, text: str) -> None:
        self._emitter.notify(self._status_sink, text)
