"""Dispatch/broadcast — delivering a resolved utterance to everyone.

Host side (Dispatcher.dispatch):
  1. Show the line as floating text near the speaker (auto-expires).
  2. Publish a BroadcastEnvelope on the broadcast channel (fire-and-forget).
  3. Write the same envelope to the durable mirror (last value wins), so an
     observer that (re)connects later still converges on the latest line.
  4. Append the line to the shared text log.

Steps 1–3 are skipped when show_floating_text is off, step 4 when show_in_log
is off. Every step is attempted even if an earlier one fails; failures are
collected and raised together as a DispatchError.

Observer side (ObserverView): subscribes to the channel, reads the mirror on
(re)connect, and renders each utterance_id once.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from collections import OrderedDict, defaultdict
from typing import Any, Awaitable, Callable, Protocol

from pydantic import ValidationError

from npc_chatter.config import Settings
from npc_chatter.errors import DispatchError, MissingReferenceError
from npc_chatter.models import BroadcastEnvelope, FloatingText, LogEntry, Position, Utterance
from npc_chatter.scene import EntityDirectory
from npc_chatter.storage import WorldStore

logger = logging.getLogger(__name__)

FLOATING_TEXT_TOPIC = "npc_chatter.floating_text"
MIRROR_KEY = "floating_text"

Handler = Callable[[dict[str, Any]], Awaitable[None]]


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class BroadcastChannel(Protocol):
    async def publish(self, topic: str, payload: dict[str, Any]) -> None: ...
    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]: ...


class PresentationSink(Protocol):
    def show(self, floating: FloatingText) -> None: ...
    def append_log(self, entry: LogEntry) -> None: ...


# ---------------------------------------------------------------------------
# InMemoryBroadcast: best-effort topic pub/sub
# ---------------------------------------------------------------------------

class InMemoryBroadcast:
    """Delivers each payload to the topic's current subscribers.

    Publishing is fire-and-forget: every handler runs in its own task, so a
    slow or failing subscriber never holds up the publisher. Failures are
    logged when the task finishes. flush() waits for deliveries still running.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        for handler in list(self._handlers[topic]):
            task = asyncio.ensure_future(handler(payload))
            self._pending.add(task)
            task.add_done_callback(lambda t, topic=topic: self._delivered(topic, t))

    def _delivered(self, topic: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Broadcast subscriber failed on topic %s", topic, exc_info=exc)

    async def flush(self) -> None:
        """Wait until every delivery scheduled so far has finished."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        self._handlers[topic].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[topic]:
                self._handlers[topic].remove(handler)

        return unsubscribe

    def subscriber_count(self, topic: str) -> int:
        return len(self._handlers[topic])


# ---------------------------------------------------------------------------
# TransientPresentation: floating texts with expiry + text log
# ---------------------------------------------------------------------------

class TransientPresentation:
    """Holds floating texts until their duration elapses, plus the text log."""

    def __init__(self, log_limit: int = 500) -> None:
        self.active: dict[str, FloatingText] = {}
        self.log: list[LogEntry] = []
        self._log_limit = log_limit

    def show(self, floating: FloatingText) -> None:
        self.active[floating.utterance_id] = floating
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.call_later(floating.duration, self._expire, floating.utterance_id)

    def _expire(self, utterance_id: str) -> None:
        if self.active.pop(utterance_id, None) is not None:
            logger.debug("Floating text %s expired", utterance_id)

    def append_log(self, entry: LogEntry) -> None:
        self.log.append(entry)
        if len(self.log) > self._log_limit:
            del self.log[: len(self.log) - self._log_limit]


# ---------------------------------------------------------------------------
# Dispatcher: host side
# ---------------------------------------------------------------------------

class Dispatcher:
    """Turns an Utterance into presentation, broadcast, mirror and log writes.

    Args:
        directory:     Resolves the speaker for its name and position.
        presentation:  Local floating text + text log.
        channel:       Broadcast channel to observers.
        mirror:        World store receiving the last envelope.
        settings:      Callable returning the current Settings (read per call).
        sender:        Identifier stamped on envelopes; observers ignore their own.
        clock:         Timestamp source, ``time.time`` by default.
    """

    def __init__(
        self,
        directory: EntityDirectory,
        presentation: PresentationSink,
        channel: BroadcastChannel,
        mirror: WorldStore,
        settings: Callable[[], Settings],
        sender: str = "host",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._directory = directory
        self._presentation = presentation
        self._channel = channel
        self._mirror = mirror
        self._settings = settings
        self._sender = sender
        self._clock = clock

    async def dispatch(self, utterance: Utterance) -> BroadcastEnvelope:
        speaker = self._directory.get(utterance.speaker_id)
        if speaker is None:
            raise MissingReferenceError(f"Speaker {utterance.speaker_id} is not in the scene")

        settings = self._settings()
        now = self._clock()
        envelope = BroadcastEnvelope(
            data=FloatingText(
                utterance_id=uuid.uuid4().hex,
                speaker_id=speaker.id,
                speaker_name=speaker.name or speaker.id,
                text=utterance.text,
                position=Position(x=speaker.position.x, y=speaker.position.y),
                timestamp=now,
                duration=settings.floating_text_duration,
            ),
            sender=self._sender,
        )
        failures: list[str] = []

        if settings.show_floating_text:
            try:
                self._presentation.show(envelope.data)
            except Exception as e:
                logger.warning("Floating text failed for %s: %s", speaker.id, e)
                failures.append(f"presentation: {e}")

            payload = envelope.model_dump()
            try:
                await self._channel.publish(FLOATING_TEXT_TOPIC, payload)
            except Exception as e:
                logger.warning("Broadcast failed for %s: %s", speaker.id, e)
                failures.append(f"broadcast: {e}")
            try:
                self._mirror.set_world(MIRROR_KEY, payload)
            except Exception as e:
                logger.warning("Mirror write failed for %s: %s", speaker.id, e)
                failures.append(f"mirror: {e}")

        if settings.show_in_log:
            try:
                self._presentation.append_log(LogEntry(
                    speaker_id=speaker.id,
                    speaker_name=envelope.data.speaker_name,
                    text=utterance.text,
                    timestamp=now,
                ))
            except Exception as e:
                logger.warning("Text log append failed for %s: %s", speaker.id, e)
                failures.append(f"log: {e}")

        if failures:
            raise DispatchError("; ".join(failures))

        logger.info(
            "%s %s: %s said %r",
            utterance.source, utterance.source_id, envelope.data.speaker_name, utterance.text,
        )
        return envelope


# ---------------------------------------------------------------------------
# ObserverView: observer side
# ---------------------------------------------------------------------------

Renderer = Callable[[BroadcastEnvelope], Awaitable[None] | None]


class ObserverView:
    """Receives floating-text envelopes for one observer.

    Broadcast and mirror can both deliver the same envelope; each
    utterance_id is rendered at most once. Envelopes sent by ``observer_id``
    itself are ignored (the host renders its own lines locally).
    """

    def __init__(
        self,
        channel: BroadcastChannel,
        mirror: WorldStore,
        render: Renderer,
        observer_id: str,
        remember: int = 256,
    ) -> None:
        self._channel = channel
        self._mirror = mirror
        self._render = render
        self._observer_id = observer_id
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._remember = remember
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._channel.subscribe(FLOATING_TEXT_TOPIC, self.receive)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def sync_from_mirror(self) -> bool:
        """Render the mirrored envelope if it has not been seen. Call on (re)connect."""
        payload = self._mirror.get_world(MIRROR_KEY)
        if not payload:
            return False
        return await self.receive(payload)

    async def receive(self, payload: dict[str, Any]) -> bool:
        try:
            envelope = BroadcastEnvelope.model_validate(payload)
        except ValidationError:
            logger.warning("Observer %s dropped malformed envelope", self._observer_id)
            return False
        if envelope.sender == self._observer_id:
            return False
        utterance_id = envelope.data.utterance_id
        if utterance_id in self._seen:
            return False
        self._seen[utterance_id] = None
        while len(self._seen) > self._remember:
            self._seen.popitem(last=False)

        result = self._render(envelope)
        if inspect.isawaitable(result):
            await result
        return True
