from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal

import structlog

LOGGER = structlog.get_logger(__name__)

DaoEventKind = Literal[
    "proposal_created",
    "vote_cast",
    "proposal_executed",
    "funds_deposited",
    "funds_withdrawn",
    "ownership_transferred",
]


@dataclass(frozen=True, slots=True)
class DaoEvent:
    kind: DaoEventKind
    proposal_index: int | None = None
    actor: str | None = None
    amount_wei: int | None = None
    purchased: bool | None = None


Subscriber = Callable[[DaoEvent], Awaitable[None]]
UnsubscribeCallback = Callable[[], Awaitable[None]]

_subscribers: set[Subscriber] = set()
_lock = asyncio.Lock()


async def subscribe(callback: Subscriber) -> UnsubscribeCallback:
    """Register a subscriber and return an unsubscribe coroutine."""
    async with _lock:
        _subscribers.add(callback)
        listener_count = len(_subscribers)
    LOGGER.debug("dao.events.subscribe", listeners=listener_count)

    async def _unsubscribe() -> None:
        async with _lock:
            _subscribers.discard(callback)
            remaining = len(_subscribers)
        LOGGER.debug("dao.events.unsubscribe", listeners=remaining)

    return _unsubscribe


async def publish(event: DaoEvent) -> None:
    """Deliver an event to every subscriber.

    Subscribers run as separate tasks; a failing subscriber is logged and does
    not affect the ledger operation that emitted the event.
    """
    async with _lock:
        listeners = list(_subscribers)
    if not listeners:
        return

    LOGGER.debug(
        "dao.events.publish",
        kind=event.kind,
        proposal_index=event.proposal_index,
        listeners=len(listeners),
    )
    for callback in listeners:
        asyncio.create_task(_invoke(callback, event))


async def _invoke(callback: Subscriber, event: DaoEvent) -> None:
    try:
        await callback(event)
    except Exception as exc:
        LOGGER.warning(
            "dao.events.callback_error",
            error=str(exc),
            kind=event.kind,
            proposal_index=event.proposal_index,
        )


__all__ = [
    "DaoEvent",
    "DaoEventKind",
    "publish",
    "subscribe",
]
