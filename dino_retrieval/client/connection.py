"""Lazily established, shared connection to the retrieval Space."""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Callable, Mapping
from functools import partial
from typing import Any

from gradio_client import Client
from loguru import logger

from ..exceptions import ConnectionFailure


class ConnectionState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class ConnectionManager:
    """Memoizes a single ``gradio_client.Client`` for the whole session.

    Concurrent callers that arrive before the client exists all await the same
    pending establishment. A failed attempt is not cached: the next call starts
    a fresh one. The handle is never closed.
    """

    def __init__(
        self,
        space: str,
        *,
        client_factory: Callable[..., Any] = Client,
        client_kwargs: Mapping[str, Any] | None = None,
    ) -> None:
        self.space = space
        self._client_factory = client_factory
        self._client_kwargs = dict(client_kwargs or {})
        self._handle: Any | None = None
        self._pending: asyncio.Future[Any] | None = None
        self.attempts = 0

    @property
    def state(self) -> ConnectionState:
        if self._handle is not None:
            return ConnectionState.READY
        if self._pending is not None:
            return ConnectionState.INITIALIZING
        return ConnectionState.UNINITIALIZED

    async def get_connection(self) -> Any:
        if self._handle is not None:
            return self._handle
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._establish())
        # A cancelled caller must not cancel the attempt other callers share.
        return await asyncio.shield(self._pending)

    async def _establish(self) -> Any:
        self.attempts += 1
        logger.info(
            "Connecting to retrieval backend {} (attempt {})",
            self.space,
            self.attempts,
        )
        loop = asyncio.get_running_loop()
        factory = partial(self._client_factory, self.space, **self._client_kwargs)
        try:
            handle = await loop.run_in_executor(None, factory)
        except Exception as exc:
            logger.warning("Connection to {} failed: {}", self.space, exc)
            raise ConnectionFailure(f"Could not connect to {self.space}: {exc}") from exc
        finally:
            self._pending = None
        self._handle = handle
        logger.info("Connected to retrieval backend {}", self.space)
        return handle
