from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator

from yunhu_bridge.domain.session import Session
from yunhu_bridge.observability.logging import get_logger

log = get_logger("bus")


@dataclass(eq=False)
class Subscription:
    """Identity-hashed so the bus can keep subscriptions in a set."""
    queue: asyncio.Queue[Session]
    closed: bool = False
    _id: int = field(default_factory=lambda: id(object()), repr=False)

    def __hash__(self) -> int:
        return self._id


class SessionBus:
    """In-process fan-out of sessions to the host framework.

    ``emit`` is the synchronous dispatch sink handed to the channel and the
    encoders. It never blocks: a full subscriber queue loses its oldest entry.
    """

    def __init__(self, max_queue_size: int = 1000):
        self._subs: set[Subscription] = set()
        self._seq = 0
        self._max_queue_size = max_queue_size

    @property
    def seq(self) -> int:
        return self._seq

    def subscribe(self) -> Subscription:
        sub = Subscription(queue=asyncio.Queue(maxsize=self._max_queue_size))
        self._subs.add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.closed = True
        self._subs.discard(sub)

    def emit(self, session: Session) -> None:
        self._seq += 1
        dead: list[Subscription] = []
        for sub in list(self._subs):
            if sub.closed:
                dead.append(sub)
                continue
            try:
                sub.queue.put_nowait(session)
            except asyncio.QueueFull:
                _ = sub.queue.get_nowait()
                sub.queue.put_nowait(session)
                log.debug("session_dropped", seq=self._seq, type=session.type)
        for d in dead:
            self._subs.discard(d)

    async def iter(self, sub: Subscription) -> AsyncIterator[Session]:
        while not sub.closed:
            yield await sub.queue.get()
