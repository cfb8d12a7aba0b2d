"""
Agent Communication Bus for Inter-Agent Messaging.

Each registered agent gets one FIFO mailbox. A mailbox is drained either by
a single consumer task that hands messages to the agent's handler, or by
the agent itself through ``receive``. One queue and one consumer per
recipient keep messages from the same sender in send order.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..config import BusConfig
from .base import AgentMessage, MessageStatus, MessageType

logger = logging.getLogger(__name__)

MessageHandler = Callable[[AgentMessage], Awaitable[Any]]


@dataclass
class Mailbox:
    """Inbound queue of one agent."""

    agent_id: str
    queue: asyncio.Queue[AgentMessage] = field(default_factory=asyncio.Queue)
    handler: MessageHandler | None = None
    consumer: asyncio.Task[None] | None = None
    delivered: int = 0

    def size(self) -> int:
        return self.queue.qsize()


@dataclass
class DeliveryResult:
    """Outcome of a direct send."""

    ok: bool
    message: AgentMessage
    response: Any = None
    error: str | None = None


@dataclass
class BroadcastResult:
    """Outcome of a broadcast; responses only when gathered."""

    message: AgentMessage
    recipients: list[str] = field(default_factory=list)
    responses: dict[str, Any] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def delivered(self) -> int:
        return len(self.recipients) - len(self.failed)


class AgentCommunicationBus:
    """Asynchronous direct and topic messaging between agents."""

    def __init__(self, config: BusConfig | None = None):
        self.config = config or BusConfig()
        self._mailboxes: dict[str, Mailbox] = {}
        self._subscribers: defaultdict[str, set[str]] = defaultdict(set)
        self._history: deque[AgentMessage] = deque(maxlen=self.config.max_history)
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._lock = threading.RLock()
        self._running = False
        self._sent = 0
        self._failed = 0

    def register_agent(self, agent_id: str, handler: MessageHandler | None = None) -> Mailbox:
        """Register an agent and create its mailbox."""
        with self._lock:
            mailbox = self._mailboxes.get(agent_id)
            if mailbox is None:
                mailbox = Mailbox(agent_id=agent_id)
                self._mailboxes[agent_id] = mailbox
            if handler is not None:
                mailbox.handler = handler
        if self._running:
            self._ensure_consumer(mailbox)
        return mailbox

    def unregister_agent(self, agent_id: str) -> None:
        """Unregister an agent and remove its mailbox."""
        with self._lock:
            mailbox = self._mailboxes.pop(agent_id, None)
            for topic in self._subscribers:
                self._subscribers[topic].discard(agent_id)
        if mailbox is not None and mailbox.consumer is not None:
            mailbox.consumer.cancel()

    def is_registered(self, agent_id: str) -> bool:
        return agent_id in self._mailboxes

    def subscribe(self, agent_id: str, topic: str) -> None:
        """Subscribe an agent to a topic."""
        with self._lock:
            self._subscribers[topic].add(agent_id)

    def unsubscribe(self, agent_id: str, topic: str) -> None:
        """Unsubscribe an agent from a topic."""
        with self._lock:
            self._subscribers[topic].discard(agent_id)

    async def start(self) -> None:
        """Start one consumer per mailbox that has a handler."""
        self._running = True
        with self._lock:
            mailboxes = list(self._mailboxes.values())
        for mailbox in mailboxes:
            self._ensure_consumer(mailbox)

    async def stop(self) -> None:
        """Cancel consumers and fail every request still awaiting a reply."""
        self._running = False
        with self._lock:
            consumers = [m.consumer for m in self._mailboxes.values() if m.consumer]
            for mailbox in self._mailboxes.values():
                mailbox.consumer = None
        for task in consumers:
            task.cancel()
        if consumers:
            await asyncio.gather(*consumers, return_exceptions=True)
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()

    async def __aenter__(self) -> AgentCommunicationBus:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def send_message(
        self,
        sender_id: str,
        recipient_id: str,
        payload: dict[str, Any],
        msg_type: MessageType = MessageType.DATA_PUSH,
        requires_response: bool = False,
        timeout: float | None = None,
    ) -> DeliveryResult:
        """Send a direct message.

        With ``requires_response`` the call waits for the recipient's reply
        and raises ``TimeoutError`` when none arrives in time; the message is
        then marked failed.
        """
        message = AgentMessage(
            msg_type=msg_type,
            sender_id=sender_id,
            recipient_id=recipient_id,
            payload=dict(payload),
            requires_response=requires_response,
        )
        future = self._enqueue(message)
        if message.status == MessageStatus.FAILED:
            return DeliveryResult(ok=False, message=message, error=f"Unknown recipient: {recipient_id}")
        if future is None:
            return DeliveryResult(ok=True, message=message)

        wait = self.config.request_timeout if timeout is None else timeout
        try:
            response = await asyncio.wait_for(future, wait)
        except asyncio.TimeoutError:
            message.status = MessageStatus.FAILED
            self._failed += 1
            logger.warning(
                f"No reply from {recipient_id} to {message.msg_type.value} "
                f"from {sender_id} within {wait}s"
            )
            raise TimeoutError(f"{recipient_id} did not reply within {wait}s") from None
        except Exception as exc:
            return DeliveryResult(ok=False, message=message, error=f"{type(exc).__name__}: {exc}")
        finally:
            self._pending.pop(message.msg_id, None)
        return DeliveryResult(ok=True, message=message, response=response)

    async def broadcast(
        self,
        sender_id: str,
        payload: dict[str, Any],
        topic: str | None = None,
        msg_type: MessageType = MessageType.DATA_PUSH,
        gather: bool = False,
        timeout: float | None = None,
    ) -> BroadcastResult:
        """Deliver to topic subscribers (or every agent), never to the sender.

        Without ``gather`` this returns once every copy is queued. With it,
        replies are collected until *timeout*; recipients that stay silent
        are listed in ``failed``.
        """
        with self._lock:
            if topic is None:
                targets = sorted(a for a in self._mailboxes if a != sender_id)
            else:
                targets = sorted(a for a in self._subscribers.get(topic, set()) if a != sender_id)

        template = AgentMessage(
            msg_type=msg_type, sender_id=sender_id, topic=topic or "", payload=dict(payload)
        )
        self._add_to_history(template)
        result = BroadcastResult(message=template, recipients=targets)

        futures: dict[str, asyncio.Future[Any]] = {}
        msg_ids: list[str] = []
        for agent_id in targets:
            copy = AgentMessage(
                msg_type=msg_type,
                sender_id=sender_id,
                recipient_id=agent_id,
                topic=topic or "",
                payload=dict(payload),
                correlation_id=template.msg_id,
                requires_response=gather,
            )
            future = self._enqueue(copy, record=False)
            msg_ids.append(copy.msg_id)
            if copy.status == MessageStatus.FAILED:
                result.failed[agent_id] = "unknown recipient"
            elif future is not None:
                futures[agent_id] = future

        if not futures:
            return result

        wait = self.config.request_timeout if timeout is None else timeout
        done, _ = await asyncio.wait(set(futures.values()), timeout=wait)
        for agent_id, future in futures.items():
            if future in done and not future.cancelled() and future.exception() is None:
                result.responses[agent_id] = future.result()
            elif future in done:
                result.failed[agent_id] = "handler error"
            else:
                future.cancel()
                result.failed[agent_id] = "timeout"
        for mid in msg_ids:
            self._pending.pop(mid, None)
        return result

    async def receive(self, agent_id: str, timeout: float | None = None) -> AgentMessage | None:
        """Pull the next message for an agent without a handler."""
        mailbox = self._mailboxes.get(agent_id)
        if mailbox is None:
            return None
        try:
            if timeout is None:
                message = await mailbox.queue.get()
            else:
                message = await asyncio.wait_for(mailbox.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        self._mark_delivered(mailbox, message)
        return message

    def reply(self, message: AgentMessage, payload: Any) -> bool:
        """Answer a message received through ``receive``."""
        future = self._pending.get(message.msg_id)
        if future is None or future.done():
            return False
        future.set_result(payload)
        return True

    def _enqueue(self, message: AgentMessage, record: bool = True) -> asyncio.Future[Any] | None:
        with self._lock:
            mailbox = self._mailboxes.get(message.recipient_id)
            if record:
                self._add_to_history(message)
            if mailbox is None:
                message.status = MessageStatus.FAILED
                self._failed += 1
                logger.warning(f"Dropping message to unknown recipient {message.recipient_id}")
                return None
            future: asyncio.Future[Any] | None = None
            if message.requires_response:
                future = asyncio.get_running_loop().create_future()
                self._pending[message.msg_id] = future
            mailbox.queue.put_nowait(message)
            self._sent += 1
        if mailbox.handler is not None:
            self._ensure_consumer(mailbox)
        return future

    def _ensure_consumer(self, mailbox: Mailbox) -> None:
        if mailbox.handler is None:
            return
        if mailbox.consumer is None or mailbox.consumer.done():
            mailbox.consumer = asyncio.get_running_loop().create_task(
                self._consume(mailbox), name=f"bus-{mailbox.agent_id}"
            )

    async def _consume(self, mailbox: Mailbox) -> None:
        while True:
            message = await mailbox.queue.get()
            self._mark_delivered(mailbox, message)
            handler = mailbox.handler
            if handler is None:
                continue
            try:
                response = await handler(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                message.status = MessageStatus.FAILED
                self._failed += 1
                logger.warning(f"Handler of {mailbox.agent_id} failed on {message.msg_id}: {exc}")
                future = self._pending.get(message.msg_id)
                if future is not None and not future.done():
                    future.set_exception(exc)
                continue
            if message.requires_response:
                self.reply(message, response)

    def _mark_delivered(self, mailbox: Mailbox, message: AgentMessage) -> None:
        if message.status == MessageStatus.PENDING:
            message.status = MessageStatus.DELIVERED
        mailbox.delivered += 1

    def _add_to_history(self, message: AgentMessage) -> None:
        """Add a message to the history buffer."""
        self._history.append(message)

    def get_history(
        self,
        agent_id: str | None = None,
        msg_type: MessageType | None = None,
        limit: int = 100,
    ) -> list[AgentMessage]:
        """Get message history with optional filters."""
        with self._lock:
            results = list(self._history)

        if agent_id:
            results = [m for m in results if m.sender_id == agent_id or m.recipient_id == agent_id]

        if msg_type:
            results = [m for m in results if m.msg_type == msg_type]

        return results[-limit:]

    def get_queue_sizes(self) -> dict[str, int]:
        """Get the size of all agent mailboxes."""
        with self._lock:
            return {agent_id: box.size() for agent_id, box in self._mailboxes.items()}

    def get_bus_stats(self) -> dict[str, Any]:
        """Get statistics about the communication bus."""
        with self._lock:
            return {
                "registered_agents": len(self._mailboxes),
                "topics": len([t for t, subs in self._subscribers.items() if subs]),
                "total_messages": len(self._history),
                "sent": self._sent,
                "failed": self._failed,
                "awaiting_reply": len(self._pending),
                "queue_sizes": self.get_queue_sizes(),
                "running": self._running,
            }
