"""
Cooperative cancellation for running jobs.

A token is registered per job at submission and threaded through the
orchestrator, the batch processor and item operations. Cancellation is
only observed where the token is polled: entity-type and batch
boundaries. An item already in flight always finishes.
"""

import threading
from enum import Enum
from typing import Optional

from ..errors import JobAlreadyRegistered


class CancelMode(str, Enum):
    PAUSE = "pause"
    STOP = "stop"


class CancellationToken:
    """Cancellation flag for a single job."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._event = threading.Event()
        self._mode: Optional[CancelMode] = None

    def cancel(self, mode: CancelMode = CancelMode.STOP) -> None:
        # First signal wins; a later stop does not rewrite an earlier pause
        if not self._event.is_set():
            self._mode = CancelMode(mode)
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def mode(self) -> Optional[CancelMode]:
        return self._mode

    def __repr__(self) -> str:
        return f"CancellationToken(job_id={self.job_id!r}, mode={self._mode})"


class CancellationRegistry:
    """
    Thread-safe mapping from active job id to its cancellation token.

    At most one token is registered per job id at a time.
    """

    def __init__(self):
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def register(self, job_id: str) -> CancellationToken:
        """
        Create and register a token for a job.

        Raises:
            JobAlreadyRegistered: If a token is already registered
        """
        with self._lock:
            if job_id in self._tokens:
                raise JobAlreadyRegistered(f"Job {job_id} already has a cancellation token")
            token = CancellationToken(job_id)
            self._tokens[job_id] = token
            return token

    def signal(self, job_id: str, mode: CancelMode = CancelMode.STOP) -> bool:
        """
        Cancel the job's token and remove the registration.

        Returns:
            True if a token was registered and signaled
        """
        with self._lock:
            token = self._tokens.pop(job_id, None)
        if token is None:
            return False
        token.cancel(mode)
        return True

    def unregister(self, job_id: str) -> None:
        """Drop a job's token without signaling it."""
        with self._lock:
            self._tokens.pop(job_id, None)

    @staticmethod
    def is_signaled(token: Optional[CancellationToken]) -> bool:
        return token is not None and token.cancelled

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
