"""Typed values shared by the backend client and the session controller."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class Configuration:
    """The (dataset, model size, finetuned) tuple that selects the active index."""

    dataset: str
    size: str
    finetuned: bool = False


@dataclass(slots=True, frozen=True)
class RetrievalImage:
    """A backend image reference, captioned only when it is a search hit."""

    url: str
    caption: str | None = None


@dataclass(slots=True, frozen=True)
class BinaryImage:
    """Raw bytes of an uploaded or pasted image."""

    data: bytes
    mime_type: str = "image/png"
    name: str | None = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")

    def data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


Query = RetrievalImage | BinaryImage


@dataclass(slots=True, frozen=True)
class RecallAtK:
    r1: float = 0.0
    r5: float = 0.0
    r10: float = 0.0
    r100: float = 0.0


@dataclass(slots=True, frozen=True)
class Metrics:
    """Dataset-level retrieval accuracy, all percentages except the counts."""

    precision_at_1: float = 0.0
    map_r: float = 0.0
    recall: RecallAtK = field(default_factory=RecallAtK)
    embedding_count: str = "0"
    dimension: int = 0


@dataclass(slots=True, frozen=True)
class Caption:
    label: str
    similarity: str


@dataclass(slots=True, frozen=True)
class ResourceLoad:
    status: str
    metrics_raw: str | None


@dataclass(slots=True, frozen=True)
class SearchOutcome:
    results: tuple[RetrievalImage, ...]
    status: str


@dataclass(slots=True, frozen=True)
class StatusMessages:
    """Fixed, user-visible status strings."""

    initializing: str = "Initializing..."
    loading: str = "Downloading Weights & Mapping..."
    load_failed: str = "Sync Failed"
    searching: str = "Analyzing Visual Semantics..."
    search_failed: str = "Search Failed"
    refresh_failed: str = "Example Refresh Failed"


@dataclass(slots=True, frozen=True)
class SessionState:
    """Snapshot observed by the presentation layer.

    Instances are never mutated; the controller publishes a new snapshot for
    every transition.
    """

    status: str = "Initializing..."
    configuration: Configuration | None = None
    top_k: int = 10
    metrics: Metrics | None = None
    examples: tuple[RetrievalImage, ...] = ()
    results: tuple[RetrievalImage, ...] = ()
    active_query_preview: str | None = None
    loading_resources: bool = False
    loading_examples: bool = False
    searching: bool = False

    @property
    def busy(self) -> bool:
        return self.loading_resources or self.loading_examples or self.searching
