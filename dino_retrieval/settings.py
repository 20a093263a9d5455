"""Application settings composed from the packaged Hydra configs."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf

from dino_retrieval.session.models import Configuration, StatusMessages

CONFIG_DIR = Path(__file__).resolve().parent / "config"


@dataclass(slots=True)
class BackendSettings:
    """Where the retrieval Space lives and how to talk to it."""

    space: str
    model_family: str = "3"
    client_kwargs: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.space:
            raise ValueError("backend.space must be provided")


@dataclass(slots=True)
class TopKSettings:
    default: int = 10
    minimum: int = 1
    maximum: int = 50

    def __post_init__(self) -> None:
        if self.minimum < 1:
            raise ValueError("top_k.minimum must be at least 1")
        if not self.minimum <= self.default <= self.maximum:
            raise ValueError(
                f"top_k.default ({self.default}) must lie within "
                f"[{self.minimum}, {self.maximum}]"
            )


@dataclass(slots=True)
class DatasetOption:
    id: str
    name: str
    description: str = ""


@dataclass(slots=True)
class AppSettings:
    backend: BackendSettings
    session: Configuration
    top_k: TopKSettings = field(default_factory=TopKSettings)
    datasets: list[DatasetOption] = field(default_factory=list)
    model_sizes: dict[str, str] = field(default_factory=dict)
    messages: StatusMessages = field(default_factory=StatusMessages)

    def __post_init__(self) -> None:
        known = {option.id for option in self.datasets}
        if known and self.session.dataset not in known:
            raise ValueError(
                f"Default dataset '{self.session.dataset}' is not in the catalog: "
                f"{', '.join(sorted(known))}"
            )
        if self.model_sizes and self.session.size not in self.model_sizes:
            raise ValueError(f"Default model size '{self.session.size}' is not configured")


def load_app_config(overrides: Sequence[str] = ()) -> DictConfig:
    """Compose ``config/app.yaml`` with optional Hydra-style overrides."""

    with initialize_config_dir(config_dir=str(CONFIG_DIR), version_base=None):
        return compose(config_name="app", overrides=list(overrides))


def parse_settings(config: DictConfig) -> AppSettings:
    container = OmegaConf.to_container(config, resolve=True)
    if not isinstance(container, dict):
        raise TypeError(f"App config must be a mapping, got {type(container).__name__}")
    return AppSettings(
        backend=BackendSettings(**container["backend"]),
        session=Configuration(**container["session"]),
        top_k=TopKSettings(**container.get("top_k", {})),
        datasets=[DatasetOption(**item) for item in container.get("datasets", [])],
        model_sizes=dict(container.get("model_sizes", {})),
        messages=StatusMessages(**container.get("messages", {})),
    )
