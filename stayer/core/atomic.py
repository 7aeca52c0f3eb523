"""All-or-nothing execution of a component's public operations.

A component lists its owned state in ``_STATE_FIELDS``. The snapshot keeps
references, not copies: every listed field must be rebound to a new value on
change (``{**d, k: v}``, ``s | {x}``, ``dataclasses.replace``), never edited
in place. Collaborators such as the oracle or the pool are not owned state
and must not be listed; a rollback would otherwise hand back a stale object.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def snapshot(component: Any) -> dict[str, Any]:
    return {name: getattr(component, name) for name in component._STATE_FIELDS}


def restore(component: Any, saved: dict[str, Any]) -> None:
    for name, value in saved.items():
        setattr(component, name, value)


def atomic(method: F) -> F:
    """Roll the component back to its pre-call state if *method* raises."""

    @functools.wraps(method)
    def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        saved = snapshot(self)
        try:
            return method(self, *args, **kwargs)
        except BaseException as e:
            restore(self, saved)
            logger.debug("%s.%s rejected: %s", type(self).__name__, method.__name__, e)
            raise

    return wrapper  # type: ignore[return-value]
