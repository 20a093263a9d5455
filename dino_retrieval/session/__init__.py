"""Session state, response decoding and request sequencing."""

from .controller import Backend, SessionController, query_preview
from .decoders import decode_caption, decode_gallery, decode_metrics
from .guard import GenerationGuard
from .models import (
    BinaryImage,
    Caption,
    Configuration,
    Metrics,
    RecallAtK,
    ResourceLoad,
    RetrievalImage,
    SearchOutcome,
    SessionState,
    StatusMessages,
)

__all__ = [
    "Backend",
    "SessionController",
    "query_preview",
    "decode_caption",
    "decode_gallery",
    "decode_metrics",
    "GenerationGuard",
    "BinaryImage",
    "Caption",
    "Configuration",
    "Metrics",
    "RecallAtK",
    "ResourceLoad",
    "RetrievalImage",
    "SearchOutcome",
    "SessionState",
    "StatusMessages",
]
