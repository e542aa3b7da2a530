"""Endpoint-keyed pool of reusable RPC clients."""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from solana.rpc.api import Client

from ..logger import TRACE, get_logger

logger = get_logger(__name__)

DEFAULT_MAX_CLIENTS_PER_ENDPOINT = 5
DEFAULT_TIMEOUT_SECONDS = 30.0

ClientFactory = Callable[[str, float], Any]


def _default_client_factory(endpoint: str, timeout: float) -> Client:
    return Client(endpoint, timeout=timeout)


class RpcConnectionPool:
    """Bounded per-endpoint set of idle clients.

    ``get_client`` never waits: it pops an idle client for the endpoint or builds a
    new one. ``return_client`` keeps the client only while the endpoint holds fewer
    than ``max_clients_per_endpoint`` idle clients. The lock guards the pop/push
    only and is never held across an RPC round-trip.
    """

    def __init__(
        self,
        max_clients_per_endpoint: int = DEFAULT_MAX_CLIENTS_PER_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client_factory: ClientFactory | None = None,
    ):
        if max_clients_per_endpoint < 1:
            raise ValueError("max_clients_per_endpoint must be at least 1")
        self.max_clients_per_endpoint = max_clients_per_endpoint
        self.timeout = timeout
        self._client_factory = client_factory or _default_client_factory
        self._idle: defaultdict[str, deque[Any]] = defaultdict(deque)
        self._lock = threading.Lock()

    def get_client(self, endpoint: str) -> Any:
        with self._lock:
            idle = self._idle.get(endpoint)
            if idle:
                return idle.pop()
        logger.log(TRACE, "Creating RPC client for %s", endpoint)
        return self._client_factory(endpoint, self.timeout)

    def return_client(self, endpoint: str, client: Any) -> None:
        with self._lock:
            idle = self._idle[endpoint]
            if len(idle) < self.max_clients_per_endpoint:
                idle.append(client)
                return
        logger.log(TRACE, "Pool for %s full, dropping client", endpoint)

    @contextmanager
    def client(self, endpoint: str) -> Iterator[Any]:
        """Borrow a client for the duration of a ``with`` block."""
        client = self.get_client(endpoint)
        try:
            yield client
        finally:
            self.return_client(endpoint, client)

    def idle_count(self, endpoint: str) -> int:
        with self._lock:
            return len(self._idle.get(endpoint, ()))

    def clear(self) -> None:
        with self._lock:
            self._idle.clear()
