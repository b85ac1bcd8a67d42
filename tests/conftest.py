import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from aarace_game import RaceGame
from aarace_maze import Maze, Position


# 5x5 maze, entrance (1,1) and exit (3,3):
#   #####
#   #...#
#   ###.#
#   #...#
#   #####
TEST_ROWS = [
    ['WALL', 'WALL', 'WALL', 'WALL', 'WALL'],
    ['WALL', 'PATH', 'PATH', 'PATH', 'WALL'],
    ['WALL', 'WALL', 'WALL', 'PATH', 'WALL'],
    ['WALL', 'PATH', 'PATH', 'PATH', 'WALL'],
    ['WALL', 'WALL', 'WALL', 'WALL', 'WALL'],
]


@pytest.fixture
def test_maze() -> Maze:
    return Maze.from_rows(TEST_ROWS, entrance=Position(1, 1), exit=Position(3, 3))


@pytest.fixture
def playing_game(test_maze) -> RaceGame:
    game = RaceGame(test_maze, max_turns=100)
    game.add_player("Player 1", "Go right")
    game.add_player("Player 2", "Go left")
    return game
