# Overview: Service-layer helpers for transactional retries, row locks and storage error mapping.

from __future__ import annotations

import random
import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    ConcurrentModification,
    ConflictError,
    GenerationExhausted,
    LedgerError,
    StorageTimeout,
    StorageUnavailable,
)
from ..extensions import db


# Backoff window after a business-id uniqueness collision (seconds)
UNIQUE_BACKOFF_RANGE = (0.05, 0.15)

_TIMEOUT_MARKERS = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "lock_timeout",
    "statement timeout",
    "canceling statement",
    "deadlock",
    "timeout",
)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id_col
    check on each flushed row catches the lost update instead.
    """
    return query.with_for_update()


def is_unique_violation(exc: IntegrityError, tokens=()) -> bool:
    """True when the IntegrityError is a uniqueness failure mentioning one of tokens."""
    message = str(getattr(exc, "orig", exc)).lower()
    if "unique" not in message and "duplicate" not in message:
        return False
    if not tokens:
        return True
    return any(token.lower() in message for token in tokens)


def storage_error_for(exc: OperationalError) -> LedgerError:
    message = str(getattr(exc, "orig", exc)).lower()
    if any(marker in message for marker in _TIMEOUT_MARKERS):
        return StorageTimeout(str(exc))
    return StorageUnavailable(str(exc))


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    unique_tokens: tuple[str, ...] = (),
    label: str = "operation",
):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    func must do all of its reads and writes and commit; on failure the
    session is rolled back before the next attempt so func always starts
    from a clean transaction.

    - StaleDataError / ConcurrentModification: optimistic-lock conflicts,
      retried with exponential backoff, then ConcurrentModification.
    - IntegrityError naming one of unique_tokens: business-id collision,
      retried after a 50-150ms random sleep (func regenerates the id),
      then GenerationExhausted. Any other IntegrityError is a ConflictError.
    - OperationalError: lock waits / timeouts become StorageTimeout, other
      driver failures StorageUnavailable, after the retry budget.
    - Domain errors and anything else roll back and propagate unchanged.
    """
    for attempt in range(attempts):
        last_attempt = attempt >= attempts - 1
        try:
            return func()
        except (StaleDataError, ConcurrentModification) as exc:
            db.session.rollback()
            current_app.logger.warning(
                "%s: concurrent modification (attempt %d/%d): %s",
                label, attempt + 1, attempts, exc,
            )
            if last_attempt:
                if isinstance(exc, ConcurrentModification):
                    raise
                raise ConcurrentModification(str(exc)) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except IntegrityError as exc:
            db.session.rollback()
            if unique_tokens and is_unique_violation(exc, unique_tokens):
                current_app.logger.warning(
                    "%s: identifier collision (attempt %d/%d)", label, attempt + 1, attempts,
                )
                if last_attempt:
                    raise GenerationExhausted(str(exc)) from exc
                time.sleep(random.uniform(*UNIQUE_BACKOFF_RANGE))
                continue
            raise ConflictError("Conflicting record already exists") from exc
        except OperationalError as exc:
            db.session.rollback()
            current_app.logger.warning(
                "%s: storage error (attempt %d/%d): %s", label, attempt + 1, attempts, exc,
            )
            if last_attempt:
                raise storage_error_for(exc) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
