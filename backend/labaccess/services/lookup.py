"""Request-scoped time budget for access-control store lookups."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator

import sqlalchemy as sa
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .. import config
from ..exceptions import LookupTimeoutError

logger = logging.getLogger(__name__)

# purpose: bound grant, assignment and override queries so a slow store surfaces as an internal error
# status: active


class LookupDeadline:
    """Track the remaining budget of one access decision."""

    def __init__(
        self,
        timeout_ms: int | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout_ms = config.ACCESS_LOOKUP_TIMEOUT_MS if timeout_ms is None else timeout_ms
        self._clock = clock
        self._expires_at = clock() + self.timeout_ms / 1000

    def remaining_ms(self) -> int:
        return int((self._expires_at - self._clock()) * 1000)

    def _expired(self, label: str) -> LookupTimeoutError:
        logger.error("Access lookup exceeded its time budget", extra={"lookup": label, "timeout_ms": self.timeout_ms})
        return LookupTimeoutError()

    @contextmanager
    def bound(self, db: Session, label: str) -> Iterator[None]:
        remaining = self.remaining_ms()
        if remaining <= 0:
            raise self._expired(label)
        previous = None
        if db.get_bind().dialect.name == "postgresql":
            previous = db.execute(sa.text("SHOW statement_timeout")).scalar()
            db.execute(sa.text(f"SET LOCAL statement_timeout = {remaining}"))
        try:
            yield
        except OperationalError as exc:
            # the transaction is aborted; its rollback discards the local timeout
            if "statement timeout" in str(exc).lower():
                raise self._expired(label) from exc
            raise
        if previous is not None:
            # the request session is shared with the handler, which must not inherit the budget
            db.execute(sa.text("SELECT set_config('statement_timeout', :value, true)"), {"value": previous})
        if self.remaining_ms() < 0:
            raise self._expired(label)
