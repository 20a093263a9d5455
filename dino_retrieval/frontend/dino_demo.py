from __future__ import annotations

import asyncio
import html
import sys
import threading
import time
import uuid
import weakref
from collections.abc import Callable, Coroutine, Sequence
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import streamlit as st
from loguru import logger

# Ensure local package imports work when launched via `streamlit run`.
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dino_retrieval.client import ConnectionManager, RemoteBackend  # noqa: E402
from dino_retrieval.session import (  # noqa: E402
    Backend,
    BinaryImage,
    Configuration,
    Metrics,
    RetrievalImage,
    SessionController,
    SessionState,
    decode_caption,
)
from dino_retrieval.settings import (  # noqa: E402
    AppSettings,
    DatasetOption,
    load_app_config,
    parse_settings,
)
from dino_retrieval.utils.logging import setup_logger  # noqa: E402

_POLL_INTERVAL = 0.4
_CARDS_PER_ROW = 5
_UPLOAD_TYPES = ["png", "jpg", "jpeg", "webp", "gif", "bmp"]


def _inject_app_styles() -> None:
    st.markdown(
        """
        <style>
        .block-container {
            padding: 2rem 3rem 4rem 3rem;
        }

        .status-pill {
            display: inline-flex;
            align-items: center;
            gap: 0.6rem;
            padding: 0.45rem 1.2rem;
            border-radius: 999px;
            border: 1px solid rgba(148, 163, 184, 0.35);
            font-family: monospace;
            font-weight: 700;
            text-transform: uppercase;
            font-size: 0.8rem;
        }

        .status-pill__dot {
            width: 10px;
            height: 10px;
            border-radius: 999px;
            background: #10b981;
        }

        .status-pill__dot--busy {
            background: #fbbf24;
            animation: pulse 1.2s ease-in-out infinite;
        }

        .result-card__label {
            font-weight: 800;
            font-size: 0.8rem;
            line-height: 1.1;
            min-height: 2.2em;
        }

        .result-card__sim {
            font-family: monospace;
            font-size: 0.7rem;
            color: #2563eb;
        }

        @keyframes pulse {
            0%, 100% { opacity: 0.5; }
            50% { opacity: 1; }
        }
        </style>
        """,
        unsafe_allow_html=True,
    )


class SessionRunner:
    """Runs one :class:`SessionController` on a private event loop thread.

    Streamlit reruns the script from the top for every interaction, so the
    controller and its loop outlive individual runs inside ``st.session_state``.
    All controller calls are marshalled onto the loop thread; the script only
    reads the latest immutable snapshot.

    The loop is stopped by :meth:`close`, or when the runner is garbage
    collected together with its browser session's state.
    """

    def __init__(
        self,
        settings: AppSettings,
        *,
        backend: Backend | None = None,
        session_id: str | None = None,
    ) -> None:
        self.settings = settings
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever,
            name=f"dino-session-{self.session_id}",
            daemon=True,
        )
        self._thread.start()
        self._finalizer = weakref.finalize(self, _stop_loop, self._loop, self._thread)
        self._inflight: list[Future[Any]] = []

        if backend is None:
            connections = ConnectionManager(
                settings.backend.space,
                client_kwargs=settings.backend.client_kwargs,
            )
            backend = RemoteBackend(connections, model_family=settings.backend.model_family)
        self.controller = SessionController(
            backend,
            settings.session,
            top_k=settings.top_k.default,
            min_top_k=settings.top_k.minimum,
            max_top_k=settings.top_k.maximum,
            messages=settings.messages,
            session_id=self.session_id,
        )
        self.requested_configuration = settings.session
        self.submit(self.controller.start())

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        self._finalizer()

    @property
    def state(self) -> SessionState:
        return self.controller.state

    def submit(self, coro: Coroutine[Any, Any, Any]) -> Future[Any]:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        future.add_done_callback(_log_unexpected_failure)
        self._inflight.append(future)
        return future

    def call(self, func: Callable[..., Any], *args: Any) -> None:
        self._loop.call_soon_threadsafe(func, *args)

    def has_pending(self) -> bool:
        self._inflight = [future for future in self._inflight if not future.done()]
        return bool(self._inflight)


def _stop_loop(loop: asyncio.AbstractEventLoop, thread: threading.Thread) -> None:
    # must not hold a reference to the runner, or it would never be collected
    if loop.is_closed():
        return
    loop.call_soon_threadsafe(loop.stop)
    if thread is threading.current_thread():
        return
    thread.join(timeout=5)
    if not loop.is_running():
        loop.close()
    logger.debug("Stopped session loop {}", thread.name)


def _log_unexpected_failure(future: Future[Any]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.opt(exception=exc).error("Session task crashed")


@st.cache_resource
def load_settings() -> AppSettings:
    cfg = load_app_config()
    setup_logger(cfg.logging)
    settings = parse_settings(cfg)
    logger.info(
        "Retrieval Space {} | default {} | top_k {} ({}-{})",
        settings.backend.space,
        settings.session,
        settings.top_k.default,
        settings.top_k.minimum,
        settings.top_k.maximum,
    )
    return settings


def get_runner() -> SessionRunner:
    """Gets the session runner from the session state, creating it if needed."""
    if "runner" not in st.session_state:
        st.session_state.runner = SessionRunner(load_settings())
    return st.session_state.runner


def _render_status(state: SessionState) -> None:
    dot_class = "status-pill__dot status-pill__dot--busy" if state.busy else "status-pill__dot"
    st.markdown(
        f'<div class="status-pill"><span class="{dot_class}"></span>'
        f"{html.escape(state.status)}</div>",
        unsafe_allow_html=True,
    )


def _render_sidebar(runner: SessionRunner, state: SessionState) -> None:
    settings = runner.settings
    current = state.configuration or settings.session
    st.sidebar.header("Domain Target")

    options: Sequence[DatasetOption] = settings.datasets or [
        DatasetOption(id=current.dataset, name=current.dataset)
    ]
    option_ids = [option.id for option in options]
    labels = {option.id: option for option in options}
    dataset = st.sidebar.radio(
        "Dataset",
        option_ids,
        index=option_ids.index(current.dataset) if current.dataset in option_ids else 0,
        format_func=lambda identifier: labels[identifier].name,
        captions=[option.description for option in options],
    )

    sizes = list(settings.model_sizes) or [current.size]
    size = st.sidebar.radio(
        "Model Size",
        sizes,
        index=sizes.index(current.size) if current.size in sizes else 0,
        format_func=lambda key: settings.model_sizes.get(key, key),
        horizontal=True,
    )
    finetuned = st.sidebar.toggle("Finetuned weights", value=current.finetuned)

    top_k = st.sidebar.slider(
        "Retrieve Top-K",
        min_value=settings.top_k.minimum,
        max_value=settings.top_k.maximum,
        value=state.top_k,
        step=1,
    )

    requested = Configuration(dataset=dataset, size=size, finetuned=finetuned)
    if requested != runner.requested_configuration:
        runner.requested_configuration = requested
        runner.submit(runner.controller.set_configuration(requested))
    if top_k != state.top_k:
        runner.call(runner.controller.set_top_k, top_k)


def _render_metrics(metrics: Metrics) -> None:
    with st.container(border=True):
        precision_col, recall_col = st.columns(2)
        precision_col.metric("Precision@1", f"{metrics.precision_at_1}%")
        recall_col.metric("Recall@1", f"{metrics.recall.r1}%")
        st.progress(
            max(0.0, min(1.0, metrics.map_r / 100.0)),
            text=f"Global MAP@R · {metrics.map_r}%",
        )
        st.caption(
            f"R@5 {metrics.recall.r5}% · R@10 {metrics.recall.r10}% · "
            f"R@100 {metrics.recall.r100}%"
        )
        st.caption(
            f"Embeddings: {metrics.embedding_count} · Dimension: {metrics.dimension}"
        )


def _grid(items: Sequence[RetrievalImage]) -> list[tuple[int, RetrievalImage, Any]]:
    cells = []
    for start in range(0, len(items), _CARDS_PER_ROW):
        columns = st.columns(_CARDS_PER_ROW)
        for offset, item in enumerate(items[start : start + _CARDS_PER_ROW]):
            cells.append((start + offset, item, columns[offset]))
    return cells


def _render_examples(runner: SessionRunner, state: SessionState) -> None:
    header_col, button_col = st.columns([3, 1])
    header_col.markdown("**Test Gallery**")
    if button_col.button(
        "Get New Examples",
        disabled=state.loading_examples,
        width="stretch",
    ):
        runner.submit(runner.controller.refresh_examples())

    if state.loading_examples:
        st.info("Randomizing samples...")
        return
    if not state.examples:
        st.caption("No examples loaded yet.")
        return

    for index, example, column in _grid(state.examples):
        with column:
            st.image(example.url, use_container_width=True)
            if st.button("Search", key=f"example_{index}", width="stretch"):
                runner.submit(runner.controller.search(example))


def _render_upload(runner: SessionRunner) -> None:
    uploaded = st.file_uploader(
        "Local file",
        type=_UPLOAD_TYPES,
        key="query_upload",
        help="Choose or drop an image to use it as the query.",
    )
    if uploaded is None:
        return
    # Streamlit keeps the upload across reruns; submit each file only once.
    if st.session_state.get("last_upload_id") == uploaded.file_id:
        return
    st.session_state["last_upload_id"] = uploaded.file_id
    image = BinaryImage(
        data=uploaded.getvalue(),
        mime_type=uploaded.type or "image/png",
        name=uploaded.name,
    )
    runner.submit(runner.controller.paste([image]))


def _render_active_query(state: SessionState) -> None:
    if not state.active_query_preview:
        return
    with st.container(border=True):
        preview_col, text_col = st.columns([1, 4])
        preview_col.image(state.active_query_preview, use_container_width=True)
        if state.searching:
            text_col.markdown("**Neural match in progress**")
            text_col.caption("Computing vector similarity...")
        else:
            text_col.markdown("**Active query**")


@dataclass(slots=True, frozen=True)
class MatchDetail:
    """What the enlarged view of one search hit shows."""

    rank: int
    url: str
    label: str
    similarity: str


def match_detail(result: RetrievalImage, rank: int) -> MatchDetail:
    caption = decode_caption(result.caption)
    return MatchDetail(
        rank=rank,
        url=result.url,
        label=caption.label,
        similarity=caption.similarity,
    )


@st.dialog("Match", width="large")
def _show_match(detail: MatchDetail) -> None:
    st.image(detail.url, use_container_width=True)
    st.caption(f"Rank #{detail.rank} · Ground Truth Category")
    st.subheader(detail.label)
    st.markdown(f"Confidence Metric: `{detail.similarity}`")


def _render_results(state: SessionState) -> None:
    st.subheader(f"Matches Found · {len(state.results)}")
    if not state.results:
        st.caption("Waiting for query")
        return

    selected: MatchDetail | None = None
    for index, result, column in _grid(state.results):
        detail = match_detail(result, index + 1)
        with column:
            with st.container(border=True):
                st.image(result.url, use_container_width=True)
                st.markdown(
                    f'<div class="result-card__sim">{html.escape(detail.similarity)}</div>'
                    f'<div class="result-card__label">{html.escape(detail.label)}</div>',
                    unsafe_allow_html=True,
                )
                if st.button("View", key=f"view_{index}", width="stretch"):
                    selected = detail
    # dialogs cannot be opened from inside columns
    if selected is not None:
        _show_match(selected)


def _dismiss_info() -> None:
    st.session_state["show_info"] = False


def _render_info() -> None:
    if not st.session_state.get("show_info", True):
        return
    with st.container(border=True):
        text_col, close_col = st.columns([12, 1])
        text_col.markdown(
            "Powered by [Meta AI's DINOv3](https://ai.meta.com/dinov3/). Pick a "
            "retrieval dataset and explore how well DINOv3 embeddings find visually "
            "similar images."
        )
        close_col.button("✕", key="dismiss_info", help="Hide", on_click=_dismiss_info)


def main() -> None:
    st.set_page_config(
        page_title="DINOv3 Retrieval",
        page_icon="🦖",
        layout="wide",
    )
    _inject_app_styles()
    st.title("🦖 DINOv3 Retrieval")
    _render_info()

    runner = get_runner()
    state = runner.state

    _render_sidebar(runner, state)
    _render_status(state)

    if state.loading_resources:
        with st.spinner(state.status):
            st.info("Loading resources...")
    elif state.metrics is not None:
        _render_metrics(state.metrics)

    _render_active_query(state)

    examples_tab, upload_tab = st.tabs(["Examples", "Custom Image"])
    with examples_tab:
        _render_examples(runner, state)
    with upload_tab:
        _render_upload(runner)

    st.divider()
    _render_results(state)

    # Poll until the background loop has settled every request.
    if state.busy or runner.has_pending():
        time.sleep(_POLL_INTERVAL)
        st.rerun()


if __name__ == "__main__":
    main()
