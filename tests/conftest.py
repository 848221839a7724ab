import pathlib
import sys
from datetime import datetime, timezone

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from engine.models import WorkshopState
from engine.mutations import upsert_item, upsert_recipe

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def ids_by_name(state):
    return {item.name: item.id for item in state.items}


@pytest.fixture
def three_tier():
    """A is a base material; B = 2 A; C = 1 B + 1 A."""
    state = WorkshopState()
    for name, category in (("A", "material"), ("B", "component"), ("C", "equipment")):
        state = upsert_item(state, name, category, now=T0)
    ids = ids_by_name(state)
    state = upsert_recipe(state, ids["B"], 1, [(ids["A"], 2)], now=T0)
    state = upsert_recipe(state, ids["C"], 1, [(ids["B"], 1), (ids["A"], 1)], now=T0)
    return state
