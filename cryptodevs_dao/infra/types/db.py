"""Lightweight typing protocols for the asyncpg pool/connection.

Only the surface the ledger gateway uses is described here. Real `asyncpg`
objects satisfy these protocols structurally, and unit tests pass fakes.
"""

from __future__ import annotations

from typing import Any, AsyncContextManager, Protocol, Self


class TransactionProtocol(Protocol):
    async def __aenter__(self) -> Self: ...
    async def __aexit__(self, exc_type, exc, tb) -> None: ...  # type: ignore[no-untyped-def]


class ConnectionProtocol(Protocol):
    async def fetchval(
        self,
        query: Any,
        *args: Any,
        column: int = 0,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> Any: ...

    async def fetchrow(
        self, query: Any, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> Any: ...
    async def fetch(
        self, query: Any, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> list[Any]: ...

    async def execute(
        self, query: Any, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> Any: ...

    async def executemany(
        self, command: Any, args: Any, *, timeout: float | None = None  # noqa: ASYNC109
    ) -> Any: ...

    def transaction(
        self,
        *,
        isolation: Any | None = None,
        readonly: bool = False,
        deferrable: bool = False,
    ) -> TransactionProtocol: ...


class PoolProtocol(Protocol):
    def acquire(
        self, *, timeout: float | None = None
    ) -> AsyncContextManager[ConnectionProtocol]: ...


__all__ = [
    "ConnectionProtocol",
    "PoolProtocol",
    "TransactionProtocol",
]
