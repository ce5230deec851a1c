"""Shared fixtures."""

import pytest

from castellan.events import ViewerRef
from castellan.goals import GoalCounters, GoalsState, MemoryGoalsStore


@pytest.fixture
def viewer() -> ViewerRef:
    return ViewerRef(twitch_id="42", username="kavaliero", display_name="Kavaliero")


@pytest.fixture
def memory_store() -> MemoryGoalsStore:
    return MemoryGoalsStore(GoalCounters())


@pytest.fixture
def goals(memory_store) -> GoalsState:
    return GoalsState(memory_store)
