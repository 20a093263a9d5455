"""Loguru configuration for the retrieval demo.

Streamlit serves every browser session from one process, so several session
controllers log into the same sinks. Each record therefore carries a
``session`` extra, bound by :func:`session_logger`; records emitted outside a
session show :data:`NO_SESSION`.

The HTTP stack underneath ``gradio_client`` logs through the standard
``logging`` module. Only the modules listed under ``module_levels`` are
forwarded into loguru, at the level given there.
"""

import logging
import sys
from typing import Any

from loguru import logger
from omegaconf import DictConfig, OmegaConf
from rich.logging import RichHandler

NO_SESSION = "-"
SESSION_FORMAT = "[{extra[session]}] {message}"

_FORWARDED_MODULES: dict[str, Any] = {
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "gradio_client": "WARNING",
}


class _ForwardHandler(logging.Handler):
    """Re-emit records of a third-party ``logging`` logger through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(exception=record.exc_info).log(
            level, "{} | {}", record.name, record.getMessage()
        )


def _stdlib_level(level: Any, module_name: str) -> int:
    """Numeric level for a standard logger; loguru level names are accepted."""

    if isinstance(level, int) and not isinstance(level, bool):
        return level
    if isinstance(level, str):
        try:
            return logger.level(level.upper()).no
        except ValueError:
            pass
    raise ValueError(f"Invalid log level {level!r} for module '{module_name}'")


def _sink_target(sink: str, options: dict[str, Any]) -> Any:
    if sink == "rich":
        return RichHandler(
            rich_tracebacks=options.pop("rich_tracebacks", True),
            show_path=False,
            show_time=options.pop("show_time", True),
            markup=False,
        )
    if sink == "stderr":
        return sys.stderr
    if sink == "stdout":
        return sys.stdout
    # anything else is a log file path
    return sink


def setup_logger(logging_cfg: DictConfig) -> list[int]:
    """Replace loguru's sinks with the configured ones and return their ids.

    Each entry of ``logging_cfg.handlers`` names a ``sink`` (``rich``,
    ``stderr``, ``stdout`` or a file path); the other keys go to
    ``logger.add``. Sinks without a ``format`` use :data:`SESSION_FORMAT`.
    """
    logger.remove()
    logger.configure(extra={"session": NO_SESSION})

    sink_ids = []
    for handler_cfg in logging_cfg.get("handlers") or []:
        options = OmegaConf.to_container(handler_cfg, resolve=True)
        if not isinstance(options, dict) or "sink" not in options:
            raise TypeError("Each logging handler needs a 'sink' entry")
        target = _sink_target(options.pop("sink"), options)
        options.setdefault("format", SESSION_FORMAT)
        sink_ids.append(logger.add(target, **options))

    levels_cfg = logging_cfg.get("module_levels")
    if levels_cfg is None:
        module_levels = dict(_FORWARDED_MODULES)
    else:
        module_levels = OmegaConf.to_container(levels_cfg, resolve=True)
        if not isinstance(module_levels, dict):
            raise TypeError("logging.module_levels must be a mapping")

    forward = _ForwardHandler()
    for module_name, level in module_levels.items():
        std_logger = logging.getLogger(module_name)
        std_logger.handlers = [forward]
        std_logger.propagate = False
        std_logger.setLevel(_stdlib_level(level, module_name))
    return sink_ids


def session_logger(session_id: str | None) -> Any:
    """A loguru logger whose records are tagged with ``session_id``."""

    return logger.bind(session=session_id or NO_SESSION)
