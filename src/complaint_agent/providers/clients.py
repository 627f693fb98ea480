"""Credential-keyed client cache shared by adapters."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Generic, TypeVar

ClientT = TypeVar("ClientT")


class CredentialClientCache(Generic[ClientT]):
    """Hands out one client per credential, rebuilding it when the key changes.

    Clients are built by an explicit factory so tests can pass fakes; there is
    no module-level singleton.
    """

    def __init__(self, factory: Callable[[str], ClientT]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._credential: str | None = None
        self._client: ClientT | None = None

    def get(self, credential: str) -> ClientT:
        with self._lock:
            if self._client is None or credential != self._credential:
                self._client = self._factory(credential)
                self._credential = credential
            return self._client

    def clear(self) -> None:
        with self._lock:
            self._client = None
            self._credential = None
