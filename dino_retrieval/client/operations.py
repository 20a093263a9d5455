"""The three remote operations exposed by the retrieval Space."""

from __future__ import annotations

import asyncio
import tempfile
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import Any

from gradio_client import handle_file
from loguru import logger

from ..exceptions import ExampleRefreshFailure, ResourceLoadFailure, SearchFailure
from ..session.decoders import decode_gallery
from ..session.models import (
    BinaryImage,
    Configuration,
    Query,
    ResourceLoad,
    RetrievalImage,
    SearchOutcome,
)
from .connection import ConnectionManager

API_LOAD_RESOURCES = "/load_resources"
API_REFRESH_EXAMPLES = "/refresh_examples_wrapper"
API_PROCESS_IMAGE = "/process_image"

DEFAULT_MODEL_FAMILY = "3"

_MIME_SUFFIXES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
}


async def _predict(connection: Any, api_name: str, **kwargs: Any) -> Any:
    # gradio_client blocks until the Space answers, so keep it off the loop.
    loop = asyncio.get_running_loop()
    call = partial(connection.predict, api_name=api_name, **kwargs)
    return await loop.run_in_executor(None, call)


def _split_outputs(result: Any, count: int) -> tuple[Any, ...]:
    if isinstance(result, (tuple, list)):
        values = tuple(result[:count])
    else:
        values = (result,)
    return values + (None,) * (count - len(values))


def _single_output(result: Any) -> Any:
    if isinstance(result, tuple):
        return result[0] if result else None
    if (
        isinstance(result, list)
        and len(result) == 1
        and isinstance(result[0], list)
        and not any(isinstance(entry, str) for entry in result[0])
    ):
        # [gallery] rather than a gallery holding one (image, caption) pair
        return result[0]
    return result


def _as_text(value: Any) -> str | None:
    return None if value is None else str(value)


@contextmanager
def _resolved_query(query: Query) -> Iterator[Mapping[str, Any]]:
    """Yield the query in a form the Space can address.

    References go through ``handle_file`` directly; raw bytes are spooled to a
    temporary file that lives only for the duration of the call.
    """

    if isinstance(query, RetrievalImage):
        if not query.url:
            raise SearchFailure("Query image has no resolvable location")
        yield handle_file(query.url)
        return

    if not isinstance(query, BinaryImage):
        raise SearchFailure(f"Unsupported query type: {type(query).__name__}")

    suffix = _MIME_SUFFIXES.get(query.mime_type.lower(), "")
    if not suffix and query.name:
        suffix = Path(query.name).suffix
    with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as handle:
        handle.write(query.data)
        temp_path = Path(handle.name)
    try:
        yield handle_file(str(temp_path))
    finally:
        temp_path.unlink(missing_ok=True)


async def load_resources(
    connection: Any,
    configuration: Configuration,
    *,
    model_family: str = DEFAULT_MODEL_FAMILY,
) -> ResourceLoad:
    """Ask the Space to materialise ``configuration`` and return its raw texts."""

    logger.info(
        "Loading resources | dataset={} | size={} | finetuned={}",
        configuration.dataset,
        configuration.size,
        configuration.finetuned,
    )
    try:
        result = await _predict(
            connection,
            API_LOAD_RESOURCES,
            dataset=configuration.dataset,
            dino_version=model_family,
            dino_size=configuration.size,
            is_finetuned=configuration.finetuned,
        )
    except Exception as exc:
        raise ResourceLoadFailure(
            f"Loading {configuration.dataset} ({configuration.size}) failed: {exc}"
        ) from exc

    status, metrics_raw = _split_outputs(result, 2)
    return ResourceLoad(status=_as_text(status) or "", metrics_raw=_as_text(metrics_raw))


async def refresh_examples(connection: Any) -> tuple[RetrievalImage, ...]:
    """Fetch a fresh random sample of queryable images."""

    try:
        result = await _predict(connection, API_REFRESH_EXAMPLES)
    except Exception as exc:
        raise ExampleRefreshFailure(f"Refreshing examples failed: {exc}") from exc

    examples = decode_gallery(_single_output(result))
    logger.debug("Received {} example image(s)", len(examples))
    return examples


async def search_images(connection: Any, query: Query, k: int) -> SearchOutcome:
    """Run a top-``k`` similarity query for ``query``."""

    if isinstance(k, bool) or not isinstance(k, int) or k < 1:
        raise SearchFailure(f"k must be a positive integer, got {k!r}")

    try:
        with _resolved_query(query) as image_input:
            result = await _predict(
                connection,
                API_PROCESS_IMAGE,
                image_input=image_input,
                k_neighbors=k,
            )
    except SearchFailure:
        raise
    except Exception as exc:
        raise SearchFailure(f"Image query failed: {exc}") from exc

    gallery, status = _split_outputs(result, 2)
    results = decode_gallery(gallery)
    logger.debug("Image query returned {} result(s) for k={}", len(results), k)
    return SearchOutcome(results=results, status=_as_text(status) or "")


class RemoteBackend:
    """Binds the remote operations to the session's shared connection."""

    def __init__(
        self,
        connections: ConnectionManager,
        *,
        model_family: str = DEFAULT_MODEL_FAMILY,
    ) -> None:
        self.connections = connections
        self.model_family = model_family

    async def load_resources(self, configuration: Configuration) -> ResourceLoad:
        connection = await self.connections.get_connection()
        return await load_resources(
            connection, configuration, model_family=self.model_family
        )

    async def refresh_examples(self) -> tuple[RetrievalImage, ...]:
        connection = await self.connections.get_connection()
        return await refresh_examples(connection)

    async def search(self, query: Query, k: int) -> SearchOutcome:
        connection = await self.connections.get_connection()
        return await search_images(connection, query, k)
