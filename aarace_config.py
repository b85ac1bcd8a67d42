"""Settings for a maze race and their validation at the caller boundary."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from aarace_game import DEFAULT_MAZE_SIZE
from aarace_maze import MIN_MAZE_SIZE

MODEL = 'gpt-4o-mini'  # Default OpenAI model
LOG_LEVEL = logging.INFO
__version__ = '20261019_1105'

MAX_MAZE_SIZE = 51
MIN_MAX_TURNS = 10
MAX_MAX_TURNS = 1000
MAX_NAME_LENGTH = 20
MAX_STRATEGY_LENGTH = 500

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s]: %(message)s"

logger = logging.getLogger(__name__)


@dataclass
class RaceSettings:
    """Validated settings for one race."""
    maze_size: int = DEFAULT_MAZE_SIZE
    max_turns: Optional[int] = None
    model: str = MODEL
    api_key: Optional[str] = None

    def __post_init__(self):
        self.maze_size = validate_maze_size(self.maze_size)
        self.max_turns = validate_max_turns(self.max_turns, maze_size=self.maze_size)

    @classmethod
    def from_env(cls, **overrides) -> "RaceSettings":
        """Settings from the environment (after loading .env), explicit overrides win."""
        load_dotenv()
        env = {
            'maze_size': os.getenv("MAZE_SIZE"),
            'max_turns': os.getenv("MAX_TURNS"),
            'model': os.getenv("LLM_MODEL"),
            'api_key': os.getenv("OPENAI_API_KEY"),
        }
        values = {k: v for k, v in env.items() if v}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def _as_int(value, *, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a whole number, got {value!r}") from exc


def validate_maze_size(size) -> int:
    """Maze side in [7, 51], even values forced odd."""
    lcl_size = _as_int(size, name="maze size")
    if not MIN_MAZE_SIZE <= lcl_size <= MAX_MAZE_SIZE:
        raise ValueError(f"maze size must be between {MIN_MAZE_SIZE} and {MAX_MAZE_SIZE}, got {lcl_size}")
    if lcl_size % 2 == 0:
        lcl_size += 1
    return lcl_size


def validate_max_turns(max_turns, *, maze_size: int) -> int:
    """Turn ceiling in [10, 1000], defaults to half the maze area."""
    if max_turns is None:
        return maze_size * maze_size // 2
    lcl_turns = _as_int(max_turns, name="max turns")
    if not MIN_MAX_TURNS <= lcl_turns <= MAX_MAX_TURNS:
        raise ValueError(f"max turns must be between {MIN_MAX_TURNS} and {MAX_MAX_TURNS}, got {lcl_turns}")
    return lcl_turns


def validate_player_name(name: str) -> str:
    lcl_name = (name or "").strip()
    if not 1 <= len(lcl_name) <= MAX_NAME_LENGTH:
        raise ValueError(f"player name must be 1-{MAX_NAME_LENGTH} characters")
    return lcl_name


def validate_strategy(strategy: str) -> str:
    lcl_strategy = (strategy or "").strip()
    if not 1 <= len(lcl_strategy) <= MAX_STRATEGY_LENGTH:
        raise ValueError(f"strategy must be 1-{MAX_STRATEGY_LENGTH} characters")
    return lcl_strategy


def setup_logging(level: int = LOG_LEVEL):
    logging.basicConfig(level=level, format=LOG_FORMAT)
