import pytest

from arena import GridWorld, WallPattern
from events import EventChannel
from helpers import clear_board


@pytest.fixture
def events():
    return EventChannel()


@pytest.fixture
def open_world(events):
    """6x6 arena with no walls at all."""
    return clear_board(GridWorld(6, 6, WallPattern.GRID, events=events))
