"""Stage tracing for manifest builds."""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

__all__ = [
    "stage",
    "current_stage",
]


_stages: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "stages", default=()
)


@contextmanager
def stage(name: str) -> Generator[None, None, None]:
    """Run a named build stage nested under any enclosing stage."""
    token = _stages.set(_stages.get() + (name,))
    label = current_stage()
    start = perf_counter()
    _LOGGER.debug("[Stage] > %s", label)
    try:
        yield
    finally:
        _stages.reset(token)
        _LOGGER.debug("[Stage] < %s (%0.2fs)", label, perf_counter() - start)


def current_stage() -> str:
    """Return the label of the innermost running stage."""
    return " > ".join(_stages.get())
