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
ProviderRegistry holding the configured providers of one protocol.
"""

import threading
from collections.abc import Callable, Mapping
from typing import Generic, TypeVar

from coreason_sso.config import ProviderConfig
from coreason_sso.exceptions import UnknownProviderError

ConfigT = TypeVar("ConfigT", bound=ProviderConfig)


class ProviderRegistry(Generic[ConfigT]):
    """
    Named provider configurations. Persisting them is up to the host: pass ``on_change``
    to be handed a snapshot after every add or remove.
    """

    def __init__(
        self,
        providers: Mapping[str, ConfigT] | None = None,
        on_change: Callable[[dict[str, ConfigT]], None] | None = None,
    ) -> None:
        self._providers: dict[str, ConfigT] = dict(providers or {})
        self._on_change = on_change
        self._lock = threading.Lock()

    def get(self, name: str) -> ConfigT:
        """
        Returns the enabled provider registered under ``name``.

        Raises:
            UnknownProviderError: If there is none, or it is disabled.
        """
        with self._lock:
            config = self._providers.get(name)
        if config is None or not config.enabled:
            raise UnknownProviderError("No matching provider found")
        return config

    def add(self, name: str, config: ConfigT) -> None:
        """Registers ``config``, replacing any provider of the same name."""
        if not name or not name.strip():
            raise ValueError("Provider name must not be empty.")
        with self._lock:
            self._providers[name] = config
            snapshot = dict(self._providers)
        if self._on_change:
            self._on_change(snapshot)

    def remove(self, name: str) -> bool:
        """Removes a provider. Returns whether one was registered."""
        with self._lock:
            removed = self._providers.pop(name, None) is not None
            snapshot = dict(self._providers)
        if removed and self._on_change:
            self._on_change(snapshot)
        return removed

    def all(self) -> dict[str, ConfigT]:
        with self._lock:
            return dict(self._providers)
