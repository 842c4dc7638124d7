"""Tests for round-robin credential selection."""

import pytest

from fast42.api.exceptions import ConfigurationError
from fast42.api.pacing import RoundRobinDispatcher


class TestRoundRobinDispatcher:
    def test_rotation_order(self):
        dispatcher = RoundRobinDispatcher(3)

        assert [dispatcher.next_index() for _ in range(7)] == [0, 1, 2, 0, 1, 2, 0]

    def test_single_credential(self):
        dispatcher = RoundRobinDispatcher(1)

        assert {dispatcher.next_index() for _ in range(5)} == {0}

    def test_each_index_selected_equally(self):
        dispatcher = RoundRobinDispatcher(4)
        counts = [0] * 4

        for _ in range(4 * 25):
            counts[dispatcher.next_index()] += 1

        assert counts == [25, 25, 25, 25]

    def test_count(self):
        dispatcher = RoundRobinDispatcher(2)

        assert dispatcher.count == 2
        assert len(dispatcher) == 2

    @pytest.mark.parametrize("count", [0, -1])
    def test_requires_a_credential(self, count):
        with pytest.raises(ConfigurationError):
            RoundRobinDispatcher(count)
