"""Result of a status transition.

The primary write either succeeds or raises. Secondary writes (history,
notifications, audit rows) are best-effort: their failures are collected here
instead of failing the whole operation, so callers can still see them.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


@dataclass
class SideEffectFailure:
    effect: str
    error: str


@dataclass
class TransitionOutcome:
    record: Any
    history: Optional[Any] = None
    notification: Optional[Any] = None
    gateway_response: Optional[dict] = None
    side_effect_failures: List[SideEffectFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.side_effect_failures

    def failed(self, effect: str) -> bool:
        return any(f.effect == effect for f in self.side_effect_failures)

    def warnings(self) -> List[str]:
        return [f"{f.effect} failed: {f.error}" for f in self.side_effect_failures]


@contextmanager
def best_effort(db, outcome: TransitionOutcome, effect: str):
    """Run a secondary write inside a SAVEPOINT.

    A database error rolls back only this write. The outcome keeps the error
    class only; statement and parameters go to the log.
    """
    try:
        with db.begin_nested():
            yield
    except SQLAlchemyError as exc:
        logger.error("%s failed", effect, exc_info=True)
        outcome.side_effect_failures.append(SideEffectFailure(effect=effect, error=type(exc).__name__))
