"""Best-effort side effects that must never fail the primary operation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdvisoryResult:
    name: str
    ok: bool
    value: Any = None
    error: str | None = None


def run_advisory(name: str, db: Session, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> AdvisoryResult:
    """
    Run ``fn`` inside a SAVEPOINT and report the outcome instead of raising.

    A failure rolls back only the savepoint, so whatever the caller already
    wrote in the surrounding transaction stays intact.
    """
    try:
        with db.begin_nested():
            value = fn(*args, **kwargs)
    except Exception as exc:
        logger.exception("Advisory step %s failed", name)
        return AdvisoryResult(name=name, ok=False, error=str(exc))
    return AdvisoryResult(name=name, ok=True, value=value)
