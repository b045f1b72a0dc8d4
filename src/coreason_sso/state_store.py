# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sso

"""
StateStore component holding in-flight OpenID logins keyed by state token.
"""

import threading
import time
from collections.abc import Callable

from coreason_sso.exceptions import DuplicateTokenError, NoMatchingStateError
from coreason_sso.models import LoginStatus, OIDCProtocolState, PendingLoginState
from coreason_sso.utils.logger import logger


class StateStore:
    """
    Concurrent, TTL-evicted map from state tokens to PendingLoginState records.

    Eviction is opportunistic: ``sweep`` is called before every new challenge rather than
    on a timer, so a record may outlive its TTL until the next challenge arrives.
    Expired records are still treated as missing by ``get`` and ``consume``.

    Attributes:
        ttl (float): Seconds after which a record is considered expired.
    """

    def __init__(
        self,
        ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the StateStore.

        Args:
            ttl: Lifetime of a record in seconds. Defaults to 60.
            clock: Monotonic clock used for expiry. Injectable for tests.
            wall_clock: Clock used for the ``created_at`` display timestamp.
        """
        self.ttl = ttl
        self._clock = clock
        self._wall_clock = wall_clock
        self._records: dict[str, PendingLoginState] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _is_expired(self, record: PendingLoginState, now: float) -> bool:
        return (now - record.created_mono) > self.ttl

    def _live(self, token: str) -> PendingLoginState:
        """Must be called while holding the lock."""
        record = self._records.get(token)
        if record is None or self._is_expired(record, self._clock()):
            raise NoMatchingStateError("No matching login state found")
        return record

    def create(self, token: str, protocol_state: OIDCProtocolState) -> PendingLoginState:
        """
        Registers a new in-flight login.

        Raises:
            DuplicateTokenError: If the token is already registered.
        """
        with self._lock:
            if token in self._records:
                raise DuplicateTokenError("State token already registered")
            record = PendingLoginState(
                state_token=token,
                protocol_state=protocol_state,
                created_at=self._wall_clock(),
                created_mono=self._clock(),
            )
            self._records[token] = record
            return record.model_copy(deep=True)

    def get(self, token: str) -> PendingLoginState:
        """
        Returns a copy of the live record for ``token``.

        Raises:
            NoMatchingStateError: If the token is unknown or expired.
        """
        with self._lock:
            return self._live(token).model_copy(deep=True)

    def update(self, token: str, mutation: Callable[[PendingLoginState], None]) -> PendingLoginState:
        """
        Applies ``mutation`` to the stored record in one critical section.

        The mutation must not block; it runs under the store lock.

        Raises:
            NoMatchingStateError: If the token is unknown or expired.
        """
        with self._lock:
            record = self._live(token)
            mutation(record)
            return record.model_copy(deep=True)

    def consume(self, token: str) -> PendingLoginState:
        """
        Atomically removes and returns a record whose login was decided valid.
        A consumed token cannot be replayed.

        Raises:
            NoMatchingStateError: If the token is unknown, expired, undecided or invalid.
        """
        with self._lock:
            record = self._live(token)
            if record.status is not LoginStatus.DECIDED_VALID or not record.valid:
                raise NoMatchingStateError("No matching login state found")
            del self._records[token]
            record.status = LoginStatus.CONSUMED
            return record

    def remove(self, token: str) -> bool:
        """Deletes a record. Returns whether one was present."""
        with self._lock:
            return self._records.pop(token, None) is not None

    def sweep(self) -> int:
        """
        Removes every record older than the TTL.

        Returns:
            int: The number of records removed.
        """
        with self._lock:
            now = self._clock()
            expired = [token for token, record in self._records.items() if self._is_expired(record, now)]
            for token in expired:
                del self._records[token]
        if expired:
            logger.debug(f"Swept {len(expired)} expired login state(s)")
        return len(expired)

    def snapshot(self) -> list[PendingLoginState]:
        """Copies of all records, expired or not, for diagnostics."""
        with self._lock:
            return [record.model_copy(deep=True) for record in self._records.values()]

    def close(self) -> None:
        """Drops all in-flight logins. Called when the owning manager shuts down."""
        with self._lock:
            count = len(self._records)
            self._records.clear()
        if count:
            logger.info(f"Discarded {count} in-flight login state(s) on shutdown")
