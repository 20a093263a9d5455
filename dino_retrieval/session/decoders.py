"""Decoding of the backend's semi-structured text and gallery payloads.

The backend formats its outputs for humans, so nothing here treats them as a
schema. Every field is matched independently and falls back to a documented
default; none of these functions raise on unexpected input.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from .models import Caption, Metrics, RecallAtK, RetrievalImage

UNKNOWN_LABEL = "Unknown"
ZERO_SIMILARITY = "0.000"

_LABEL_PREFIXES = ("Class: ", "Label: ")
_SIMILARITY_PREFIX = "Sim: "

_PERCENT_PATTERNS = {
    "precision_at_1": re.compile(r"Precision@1: ([\d.]+)%"),
    "map_r": re.compile(r"MAP@R: ([\d.]+)%"),
    "r1": re.compile(r"R@1: ([\d.]+)%"),
    "r5": re.compile(r"R@5: ([\d.]+)%"),
    "r10": re.compile(r"R@10: ([\d.]+)%"),
    "r100": re.compile(r"R@100: ([\d.]+)%"),
}
_EMBEDDING_COUNT = re.compile(r"Total embeddings: (\d+)")
_DIMENSION = re.compile(r"Embedding dimension: (\d+)")


def _match_float(pattern: re.Pattern[str], raw: str) -> float:
    match = pattern.search(raw)
    if match is None:
        return 0.0
    try:
        return float(match.group(1))
    except ValueError:
        # e.g. "1.2.3%" matches the character class but is not a number
        return 0.0


def decode_metrics(raw: str | None) -> Metrics:
    """Extract the accuracy figures from the ``load_resources`` summary text."""

    if not raw:
        return Metrics()

    values = {name: _match_float(pattern, raw) for name, pattern in _PERCENT_PATTERNS.items()}
    count_match = _EMBEDDING_COUNT.search(raw)
    dimension_match = _DIMENSION.search(raw)
    return Metrics(
        precision_at_1=values["precision_at_1"],
        map_r=values["map_r"],
        recall=RecallAtK(
            r1=values["r1"],
            r5=values["r5"],
            r10=values["r10"],
            r100=values["r100"],
        ),
        embedding_count=count_match.group(1) if count_match else "0",
        dimension=int(dimension_match.group(1)) if dimension_match else 0,
    )


def decode_caption(raw: str | None) -> Caption:
    """Split a ``"Class: <label>\\nSim: <similarity>"`` caption into its parts."""

    if not raw:
        return Caption(label=UNKNOWN_LABEL, similarity=ZERO_SIMILARITY)

    parts = raw.split("\n")
    label = parts[0]
    for prefix in _LABEL_PREFIXES:
        label = label.replace(prefix, "")
    similarity = parts[1].replace(_SIMILARITY_PREFIX, "") if len(parts) > 1 else ""
    return Caption(
        label=label or UNKNOWN_LABEL,
        similarity=similarity or ZERO_SIMILARITY,
    )


def image_location(item: Any) -> str:
    """Best-effort URL or path for an image entry, ``""`` when there is none."""

    if isinstance(item, str):
        return item
    if not isinstance(item, Mapping):
        return ""

    image = item.get("image")
    if isinstance(image, Mapping):
        for key in ("url", "path"):
            value = image.get(key)
            if value:
                return str(value)
    elif isinstance(image, str) and image:
        return image

    for key in ("url", "path"):
        value = item.get(key)
        if value:
            return str(value)
    return ""


def decode_image(item: Any) -> RetrievalImage | None:
    caption: Any = None
    if isinstance(item, Sequence) and not isinstance(item, str):
        # Older clients return gallery entries as (image, caption) pairs.
        if not item:
            return None
        entry = item[0]
        caption = item[1] if len(item) > 1 else None
    else:
        entry = item
        if isinstance(item, Mapping):
            caption = item.get("caption")

    url = image_location(entry)
    if not url:
        return None
    return RetrievalImage(url=url, caption=None if caption is None else str(caption))


def decode_gallery(payload: Any) -> tuple[RetrievalImage, ...]:
    """Decode a gallery output, skipping entries without a usable location."""

    if not payload or isinstance(payload, (str, Mapping)):
        return ()
    images: list[RetrievalImage] = []
    for item in payload:
        image = decode_image(item)
        if image is not None:
            images.append(image)
    return tuple(images)
