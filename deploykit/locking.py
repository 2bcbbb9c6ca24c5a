"""Advisory per-environment locks so only one deployment runs at a time."""

from __future__ import annotations

import contextlib
import logging
import os
import time
from pathlib import Path
from typing import Iterator

from pydantic import BaseModel, Field, ValidationError

from deploykit.errors import LockError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 1800.0


class LockInfo(BaseModel):
    """Contents of an environment lock file."""

    environment: str
    owner: str
    pid: int = Field(default_factory=os.getpid)
    acquired_at: float = Field(default_factory=time.time)
    expires_at: float

    @property
    def is_expired(self) -> bool:
        return time.time() > self.expires_at


class EnvironmentLock:
    """One-holder-at-a-time lock files, ``<lock_dir>/<environment>.lock``.

    A lock file is created with ``O_EXCL``, so of two processes racing for
    the same environment exactly one wins.  A lock past its ``expires_at``
    belongs to a deployment that died without cleaning up; it is discarded
    on the next read.

    Parameters
    ----------
    lock_dir:
        Directory holding the lock files.
    timeout:
        Seconds a lock stays valid after it is taken.
    """

    def __init__(self, lock_dir: str | Path, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.lock_dir = Path(lock_dir)
        self.timeout = timeout

    def acquire(self, environment: str, owner: str) -> LockInfo:
        """Take the lock on *environment* for *owner*.

        Re-acquiring a lock already held by *owner* returns it unchanged.
        Raises :class:`LockError` when someone else holds it.
        """
        held = self.is_locked(environment)
        if held is not None:
            if held.owner != owner:
                raise LockError(f"Environment '{environment}' is locked by '{held.owner}'.")
            return held

        now = time.time()
        lock = LockInfo(
            environment=environment, owner=owner, acquired_at=now, expires_at=now + self.timeout,
        )
        path = self._lock_path(environment)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise LockError(f"Environment '{environment}' was locked concurrently.") from None
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(lock.model_dump_json(indent=2))

        logger.debug("Locked %s for %s until %.0f", environment, owner, lock.expires_at)
        return lock

    def release(self, environment: str, owner: str) -> bool:
        """Drop *owner*'s lock.  False when nothing was held."""
        held = self.is_locked(environment)
        if held is None:
            return False
        if held.owner != owner:
            raise LockError(
                f"Cannot unlock '{environment}': held by '{held.owner}', not '{owner}'."
            )
        self._lock_path(environment).unlink(missing_ok=True)
        logger.debug("Unlocked %s (%s)", environment, owner)
        return True

    @contextlib.contextmanager
    def hold(self, environment: str, owner: str) -> Iterator[LockInfo]:
        lock = self.acquire(environment, owner)
        try:
            yield lock
        finally:
            self.release(environment, owner)

    def is_locked(self, environment: str) -> LockInfo | None:
        """The live lock on *environment*, if any.

        Expired and unreadable lock files are deleted.
        """
        path = self._lock_path(environment)
        try:
            lock = LockInfo.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (ValidationError, OSError):
            logger.warning("Discarding unreadable lock file %s", path)
            path.unlink(missing_ok=True)
            return None

        if lock.is_expired:
            logger.info("Lock on %s held by %s expired, discarding", environment, lock.owner)
            path.unlink(missing_ok=True)
            return None
        return lock

    def force_unlock(self, environment: str) -> bool:
        """Remove the lock whoever holds it."""
        path = self._lock_path(environment)
        if not path.is_file():
            return False
        path.unlink()
        logger.warning("Force-unlocked environment %s", environment)
        return True

    def _lock_path(self, environment: str) -> Path:
        return self.lock_dir / f"{environment}.lock"
