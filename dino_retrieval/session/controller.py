"""Session controller for the remote retrieval demo.

The controller is the only writer of :class:`SessionState`. Every transition
publishes a fresh immutable snapshot, so a presentation layer running on
another thread can read :attr:`SessionController.state` at any time.

Two :class:`GenerationGuard` instances keep responses consistent with what the
user currently sees:

* configuration generations, issued on every load cycle; resource loads and
  example refreshes only apply while their generation is current;
* search sequence numbers, issued on every search trigger and on every load
  cycle; a search result only applies while its number is the latest issued.

Superseded responses are dropped without touching the state beyond clearing
their pending flag. Nothing is cancelled on the backend.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Any, Protocol

from ..exceptions import (
    ConnectionFailure,
    ExampleRefreshFailure,
    ResourceLoadFailure,
    SearchFailure,
)
from ..utils.logging import session_logger
from .decoders import decode_metrics
from .guard import GenerationGuard
from .models import (
    BinaryImage,
    Configuration,
    Query,
    ResourceLoad,
    RetrievalImage,
    SearchOutcome,
    SessionState,
    StatusMessages,
)

Listener = Callable[[SessionState], None]


class Backend(Protocol):
    async def load_resources(self, configuration: Configuration) -> ResourceLoad: ...

    async def refresh_examples(self) -> tuple[RetrievalImage, ...]: ...

    async def search(self, query: Query, k: int) -> SearchOutcome: ...


def query_preview(query: Query) -> str:
    """Displayable reference for a query, available before any network call."""

    if isinstance(query, BinaryImage):
        return query.data_uri()
    return query.url


class SessionController:
    def __init__(
        self,
        backend: Backend,
        configuration: Configuration,
        *,
        top_k: int = 10,
        min_top_k: int = 1,
        max_top_k: int = 50,
        messages: StatusMessages | None = None,
        session_id: str | None = None,
    ) -> None:
        if not isinstance(configuration, Configuration):
            raise TypeError(
                f"configuration must be a Configuration, got {type(configuration).__name__}"
            )
        self._backend = backend
        self._log = session_logger(session_id)
        self._configuration = configuration
        self._messages = messages or StatusMessages()
        self._min_top_k = min_top_k
        self._max_top_k = max_top_k
        self._validate_top_k(top_k)

        self._generations = GenerationGuard()
        self._searches = GenerationGuard()
        self._pending_loads = 0
        self._pending_refreshes = 0
        self._pending_searches = 0
        self._started = False
        self._listeners: list[Listener] = []
        self._state = SessionState(
            status=self._messages.initializing,
            configuration=configuration,
            top_k=top_k,
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def messages(self) -> StatusMessages:
        return self._messages

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot until unsubscribed."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                self._log.exception("Session listener {} failed", listener)

    def _validate_top_k(self, k: int) -> None:
        if isinstance(k, bool) or not isinstance(k, int):
            raise ValueError(f"top_k must be an integer, got {k!r}")
        if not self._min_top_k <= k <= self._max_top_k:
            raise ValueError(
                f"top_k must be between {self._min_top_k} and {self._max_top_k}, got {k}"
            )

    def set_top_k(self, k: int) -> None:
        """Change K for subsequent searches; results already shown are kept."""

        self._validate_top_k(k)
        if k != self._state.top_k:
            self._update(top_k=k)

    # -- configuration -------------------------------------------------------

    async def start(self) -> None:
        """Run the first load cycle for the initial configuration."""

        await self._load_cycle(self._configuration)

    async def set_configuration(self, configuration: Configuration) -> None:
        if self._started and configuration == self._configuration:
            self._log.debug("Configuration unchanged: {}", configuration)
            return
        await self._load_cycle(configuration)

    async def _load_cycle(self, configuration: Configuration) -> None:
        self._started = True
        self._configuration = configuration
        generation = self._generations.issue()
        # searches issued for the previous configuration are no longer relevant
        self._searches.issue()
        self._pending_loads += 1
        self._log.info("Load cycle #{} for {}", generation, configuration)
        self._update(
            configuration=configuration,
            status=self._messages.loading,
            metrics=None,
            examples=(),
            results=(),
            active_query_preview=None,
            loading_resources=True,
        )
        try:
            try:
                loaded = await self._backend.load_resources(configuration)
            except (ConnectionFailure, ResourceLoadFailure) as exc:
                if self._generations.is_current(generation):
                    self._log.warning("Load cycle #{} failed: {}", generation, exc)
                    self._update(status=self._messages.load_failed, metrics=None)
                else:
                    self._log.debug(
                        "Ignoring failure of superseded load cycle #{}: {}", generation, exc
                    )
                return

            if not self._generations.is_current(generation):
                self._log.debug(
                    "Discarding resources of superseded load cycle #{} (latest #{})",
                    generation,
                    self._generations.latest,
                )
                return

            metrics = (
                None if loaded.metrics_raw is None else decode_metrics(loaded.metrics_raw)
            )
            self._update(status=loaded.status, metrics=metrics)
            await self._refresh_examples(generation)
        finally:
            self._pending_loads -= 1
            self._update(loading_resources=self._pending_loads > 0)

    # -- examples ------------------------------------------------------------

    async def refresh_examples(self) -> None:
        """Replace the example gallery with a fresh sample from the backend."""

        await self._refresh_examples(self._generations.latest)

    async def _refresh_examples(self, generation: int) -> None:
        self._pending_refreshes += 1
        self._update(loading_examples=True)
        changes: dict[str, Any] = {}
        try:
            examples = await self._backend.refresh_examples()
        except (ConnectionFailure, ExampleRefreshFailure) as exc:
            if self._generations.is_current(generation):
                self._log.warning("Example refresh failed: {}", exc)
                changes["status"] = self._messages.refresh_failed
            else:
                self._log.debug(
                    "Ignoring failed example refresh of load cycle #{}: {}", generation, exc
                )
        else:
            if self._generations.is_current(generation):
                changes["examples"] = tuple(examples)
            else:
                self._log.debug("Discarding examples of superseded load cycle #{}", generation)
        finally:
            self._pending_refreshes -= 1
            changes["loading_examples"] = self._pending_refreshes > 0
            self._update(**changes)

    # -- search --------------------------------------------------------------

    def _issue_search(self, query: Query) -> tuple[int, int]:
        token = self._searches.issue()
        self._pending_searches += 1
        self._update(
            searching=True,
            status=self._messages.searching,
            active_query_preview=query_preview(query),
        )
        return token, self._state.top_k

    async def _run_search(self, token: int, query: Query, k: int) -> bool:
        changes: dict[str, Any] = {}
        applied = False
        try:
            outcome = await self._backend.search(query, k)
        except (ConnectionFailure, SearchFailure) as exc:
            if self._searches.is_current(token):
                self._log.warning("Search #{} failed: {}", token, exc)
                changes["status"] = self._messages.search_failed
            else:
                self._log.debug("Ignoring failure of superseded search #{}: {}", token, exc)
        else:
            if self._searches.is_current(token):
                self._log.info(
                    "Search #{} accepted with {} result(s)", token, len(outcome.results)
                )
                changes["results"] = tuple(outcome.results)
                changes["status"] = outcome.status
                applied = True
            else:
                self._log.debug(
                    "Discarding superseded search #{} (latest #{})",
                    token,
                    self._searches.latest,
                )
        finally:
            self._pending_searches -= 1
            changes["searching"] = self._pending_searches > 0
            self._update(**changes)
        return applied

    async def search(self, query: Query) -> bool:
        """Search for images similar to ``query``.

        Returns whether the response was applied, i.e. no newer search or
        configuration change superseded it while it was in flight.
        """

        token, k = self._issue_search(query)
        return await self._run_search(token, query, k)

    async def paste(self, items: Iterable[BinaryImage]) -> int:
        """Search with every image among pasted clipboard ``items``.

        Non-image items are ignored. Searches are issued in clipboard order, so
        the last image is the one whose results end up displayed.
        """

        images = [item for item in items if item.is_image]
        if not images:
            self._log.debug("Paste contained no image items")
            return 0
        runs = []
        for image in images:
            token, k = self._issue_search(image)
            runs.append(self._run_search(token, image, k))
        await asyncio.gather(*runs)
        return len(images)
