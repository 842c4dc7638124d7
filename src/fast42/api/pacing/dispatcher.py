"""Round-robin selection of the credential that serves the next call."""

from __future__ import annotations

from fast42.api.exceptions import ConfigurationError


class RoundRobinDispatcher:
    """Rotating cursor over ``count`` credentials.

    Every credential is selected equally often regardless of its quota, so
    keys with unequal limits under-use the larger one. Configure keys with
    the same rate limit if uniform throughput matters.

    Usage:
        dispatcher = RoundRobinDispatcher(3)
        dispatcher.next_index()  # 0
        dispatcher.next_index()  # 1
        dispatcher.next_index()  # 2
        dispatcher.next_index()  # 0
    """

    def __init__(self, count: int) -> None:
        if count < 1:
            raise ConfigurationError("RoundRobinDispatcher requires at least one credential")
        self._count = count
        self._cursor = 0

    @property
    def count(self) -> int:
        """Number of credentials in the rotation."""
        return self._count

    def __len__(self) -> int:
        return self._count

    def next_index(self) -> int:
        """Return the current index and advance the cursor."""
        index = self._cursor
        self._cursor = (self._cursor + 1) % self._count
        return index
