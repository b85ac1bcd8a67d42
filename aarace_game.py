"""Mice, fog-of-war vision and the turn state machine of a two-mouse maze race."""

import json
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Set, Union

from aarace_maze import Cell, Facing, Maze, MazeResult, Position, generate_maze

__version__ = '20261019_1047'

DEFAULT_MAZE_SIZE = 15
START_FACING = Facing.EAST  # entrance is on the left edge, exit on the right

logger = logging.getLogger(__name__)


# === Errors ===

class GameRuleError(ValueError):
    """A call that breaks the rules of the race; state is left untouched."""


class InvalidPlayerError(GameRuleError):
    pass


class GameFullError(GameRuleError):
    pass


class GameStateError(GameRuleError):
    pass


# === Value types ===

class Turn(Enum):
    LEFT = 'LEFT'
    RIGHT = 'RIGHT'


@dataclass(frozen=True)
class MouseAction:
    """One decision per mouse per turn: an optional quarter turn, then an optional step."""
    turn: Optional[Turn] = None
    move: bool = False

    def __post_init__(self):
        if self.turn is not None and not isinstance(self.turn, Turn):
            raise ValueError(f"Invalid turn: {self.turn!r}")
        if not isinstance(self.move, bool):
            raise ValueError(f"move must be a bool, got {self.move!r}")

    @classmethod
    def from_dict(cls, data: Dict) -> "MouseAction":
        lcl_turn = data.get('turn')
        if isinstance(lcl_turn, str):
            try:
                lcl_turn = Turn[lcl_turn.upper()]
            except KeyError as exc:
                raise ValueError(f"Invalid turn: {data.get('turn')!r}") from exc
        return cls(turn=lcl_turn, move=data.get('move', False))

    @classmethod
    def coerce(cls, action: Union["MouseAction", Dict]) -> "MouseAction":
        """Accept a MouseAction or its dict form, reject anything else."""
        if isinstance(action, MouseAction):
            return action
        if isinstance(action, dict):
            return cls.from_dict(action)
        raise ValueError(f"Invalid action: {action!r}")

    def to_dict(self) -> Dict:
        return {'turn': self.turn.value if self.turn else None, 'move': self.move}

    def describe(self) -> str:
        parts = []
        if self.turn:
            parts.append(f"turn {self.turn.value.lower()}")
        if self.move:
            parts.append("move forward")
        return ", ".join(parts) or "(no action)"


class CellView(Enum):
    """What a mouse makes of the cell one step away."""
    WALL = 'wall'
    PATH = 'path'
    EXIT = 'exit'
    START = 'start'
    UNKNOWN = 'unknown'


class GameStatus(Enum):
    WAITING = 'WAITING'
    PLAYING = 'PLAYING'
    PLAYER1_WIN = 'PLAYER1_WIN'
    PLAYER2_WIN = 'PLAYER2_WIN'
    DRAW = 'DRAW'

    @property
    def is_terminal(self) -> bool:
        return self in (GameStatus.PLAYER1_WIN, GameStatus.PLAYER2_WIN, GameStatus.DRAW)


# === Vision ===

def cast_line_of_sight(maze: Maze, origin: Position, facing: Facing) -> Iterator[Position]:
    """Yield cells outward from origin until (and including) the first wall, or the edge."""
    pos = origin
    while True:
        pos = facing.step(pos)
        if not maze.in_bounds(pos=pos):
            return
        yield pos
        if maze.cell(pos=pos) == Cell.WALL:
            return


class RaceMouse:
    """A racing mouse: where it is, where it looks and what it has seen so far."""

    def __init__(
            self, *,
            name: str,
            strategy: str,
            position: Position,
            facing: Facing = START_FACING,
            explored: Optional[Set[Position]] = None,
            action_history: Optional[List[MouseAction]] = None,
    ):
        self.name = name
        self.strategy = strategy
        self.position = Position(*position)
        self.facing = facing
        self.explored: Set[Position] = set(explored) if explored else set()
        self.action_history: List[MouseAction] = list(action_history) if action_history else []
        self.explored.add(self.position)

    def __repr__(self):
        return f"RaceMouse({self.name!r} @{tuple(self.position)} {self.facing.name})"

    def explore(self, *, maze: Maze) -> Set[Position]:
        """
        Line-of-sight cast ahead, left and right of the current facing.

        Returns
        -------
        Set[Position]
            Cells that were added to the explored memory by this cast.
        """
        before = set(self.explored)
        self.explored.add(self.position)
        for facing in (self.facing, self.facing.turn_left(), self.facing.turn_right()):
            self.explored.update(cast_line_of_sight(maze, self.position, facing))
        return self.explored - before

    def act(self, *, action: MouseAction, maze: Maze) -> bool:
        """Turn, then step forward if the cell is free. Returns True if the mouse moved."""
        if action.turn is Turn.LEFT:
            self.facing = self.facing.turn_left()
        elif action.turn is Turn.RIGHT:
            self.facing = self.facing.turn_right()

        moved = False
        if action.move:
            ahead = self.facing.step(self.position)
            if maze.is_free(pos=ahead):
                self.position = ahead
                moved = True

        self.action_history.append(action)
        self.explore(maze=maze)
        return moved

    def look(self, *, relative: str) -> Position:
        """Cell one step ahead, left or right of the current facing."""
        if relative == 'front':
            facing = self.facing
        elif relative == 'left':
            facing = self.facing.turn_left()
        elif relative == 'right':
            facing = self.facing.turn_right()
        else:
            raise ValueError(f"Invalid relative direction: {relative}. Must be 'front', 'left' or 'right'")
        return facing.step(self.position)

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'strategy': self.strategy,
            'position': self.position._asdict(),
            'facing': self.facing.name,
            'explored': [list(p) for p in sorted(self.explored)],
            'action_history': [a.to_dict() for a in self.action_history],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RaceMouse":
        return cls(
            name=data['name'],
            strategy=data.get('strategy', ''),
            position=Position(**data['position']),
            facing=Facing[data['facing']],
            explored={Position(*p) for p in data.get('explored', [])},
            action_history=[MouseAction.from_dict(a) for a in data.get('action_history', [])],
        )


@dataclass
class MouseVision:
    """What one mouse knows at the start of a turn."""
    position: Position
    facing: Facing
    front: CellView
    left: CellView
    right: CellView
    exit_visible: Optional[Position]
    opponent_visible: Optional[Position]
    explored_map: str
    turn: int = 1
    action_history: List[MouseAction] = field(default_factory=list)

    def format(self) -> str:
        return format_vision(self)

    def is_blocked(self, relative: str) -> bool:
        return getattr(self, relative) is CellView.WALL


def format_vision(vision: MouseVision) -> str:
    return "\n".join([
        f"FRONT: {vision.front.value}",
        f"LEFT: {vision.left.value}",
        f"RIGHT: {vision.right.value}",
    ])


def classify_cell(maze: Maze, explored: Set[Position], pos: Position) -> CellView:
    """One-step lookahead classification of a cell from a mouse's memory."""
    if not maze.in_bounds(pos=pos):
        return CellView.WALL
    if pos not in explored:
        return CellView.UNKNOWN
    if pos == maze.exit:
        return CellView.EXIT
    if pos == maze.entrance:
        return CellView.START
    return CellView.WALL if maze.cell(pos=pos) == Cell.WALL else CellView.PATH


def render_memory_map(
        maze: Maze,
        mouse: RaceMouse,
        *,
        opponent: Optional[Position] = None,
        crop: bool = True,
) -> str:
    """
    ASCII map of a mouse's explored memory.

    The mouse is drawn as its facing arrow, the exit as E, a known opponent as
    O, the entrance as S, explored cells as # or . and everything else inside
    the drawn area as ?. With crop the map is cut to the explored bounding box.
    """
    if crop:
        xs = [p.x for p in mouse.explored] + [mouse.position.x]
        ys = [p.y for p in mouse.explored] + [mouse.position.y]
        min_x, max_x = max(min(xs), 0), min(max(xs), maze.cols - 1)
        min_y, max_y = max(min(ys), 0), min(max(ys), maze.rows - 1)
    else:
        min_x, max_x, min_y, max_y = 0, maze.cols - 1, 0, maze.rows - 1

    lines = []
    for y in range(min_y, max_y + 1):
        line = []
        for x in range(min_x, max_x + 1):
            pos = Position(x, y)
            known = pos in mouse.explored
            if pos == mouse.position:
                line.append(mouse.facing.arrow)
            elif pos == maze.exit and known:
                line.append('E')
            elif opponent is not None and pos == opponent and known:
                line.append('O')
            elif pos == maze.entrance and known:
                line.append('S')
            elif known:
                line.append('#' if maze.cell(pos=pos) == Cell.WALL else '.')
            else:
                line.append('?')
        lines.append("".join(line))
    return "\n".join(lines)


# === Game ===

class RaceGame:
    """
    Authoritative state of one match: the maze, up to two mice, the turn
    counter and the status. Mutated in place by its owner only; everything
    handed out (visions, snapshots, dicts) is an independent copy.
    """

    def __init__(self, maze: Maze, *, max_turns: Optional[int] = None):
        if max_turns is None:
            max_turns = maze.size * maze.size // 2
        if int(max_turns) < 1:
            raise ValueError(f"max_turns must be positive, got {max_turns}")
        self.maze = maze
        self.max_turns = int(max_turns)
        self.turn = 0
        self.status = GameStatus.WAITING
        self.mice: List[RaceMouse] = []

    @classmethod
    def create(
            cls,
            size: int = DEFAULT_MAZE_SIZE,
            max_turns: Optional[int] = None,
            *,
            rng: Optional[random.Random] = None,
            preview: Optional[Union[MazeResult, Maze]] = None,
    ) -> "RaceGame":
        """New WAITING game on a freshly generated maze, or on a previewed one."""
        if preview is None:
            maze = generate_maze(size, rng=rng).maze
        else:
            maze = preview.maze if isinstance(preview, MazeResult) else preview
        game = cls(maze, max_turns=max_turns)
        logger.debug(f"game created on {maze.size}x{maze.size} maze, max_turns={game.max_turns}")
        return game

    def __repr__(self):
        return f"RaceGame(turn={self.turn}/{self.max_turns}, status={self.status.name}, mice={self.mice})"

    # --- players ---

    def add_player(self, name: str, strategy: str) -> RaceMouse:
        """Place a new mouse at the entrance; the second one starts the race."""
        if len(self.mice) >= 2:
            raise GameFullError("Game already has 2 players")
        if self.status is not GameStatus.WAITING:
            raise GameStateError("Cannot add player to a game that is not waiting")

        mouse = RaceMouse(name=name, strategy=strategy, position=self.maze.entrance, facing=START_FACING)
        mouse.explore(maze=self.maze)
        self.mice.append(mouse)

        if len(self.mice) == 2:
            self.status = GameStatus.PLAYING
            logger.info(f"race started: {self.mice[0].name} vs {self.mice[1].name}")
        return mouse

    def _mouse(self, index: int) -> RaceMouse:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(self.mice):
            raise InvalidPlayerError(f"Invalid player index: {index!r}")
        return self.mice[index]

    def opponent_of(self, index: int) -> Optional[RaceMouse]:
        self._mouse(index)
        if len(self.mice) < 2:
            return None
        return self.mice[1 - index]

    # --- vision ---

    def get_mouse_vision(self, index: int) -> MouseVision:
        """Per-turn snapshot of what mouse `index` perceives and remembers."""
        mouse = self._mouse(index)
        opponent = self.opponent_of(index)

        exit_visible = self.maze.exit if self.maze.exit in mouse.explored else None
        opponent_visible = None
        if opponent is not None and opponent.position in mouse.explored:
            opponent_visible = opponent.position

        return MouseVision(
            position=mouse.position,
            facing=mouse.facing,
            front=classify_cell(self.maze, mouse.explored, mouse.look(relative='front')),
            left=classify_cell(self.maze, mouse.explored, mouse.look(relative='left')),
            right=classify_cell(self.maze, mouse.explored, mouse.look(relative='right')),
            exit_visible=exit_visible,
            opponent_visible=opponent_visible,
            explored_map=render_memory_map(self.maze, mouse, opponent=opponent_visible),
            turn=self.turn + 1,
            action_history=list(mouse.action_history),
        )

    # --- turns ---

    def apply_action(self, index: int, action: Union[MouseAction, Dict]) -> bool:
        """Apply one mouse's action. Returns True if the mouse changed cell."""
        mouse = self._mouse(index)
        if self.status is not GameStatus.PLAYING:
            raise GameStateError(f"Game is not in playing state ({self.status.name})")
        action = MouseAction.coerce(action)
        return mouse.act(action=action, maze=self.maze)

    def execute_turn(self, actions: Sequence[Union[MouseAction, Dict]]) -> GameStatus:
        """
        Apply both mice's actions, mouse 0 first, advance the turn and settle the outcome.

        Args:
            actions: one action per mouse, in player order

        Returns:
            GameStatus: status after the end-of-turn check
        """
        if self.status is not GameStatus.PLAYING:
            raise GameStateError(f"Game is not in playing state ({self.status.name})")
        if len(self.mice) != 2:
            raise GameStateError("Game does not have 2 players")
        if len(actions) != 2:
            raise ValueError(f"Expected 2 actions, got {len(actions)}")
        lcl_actions = [MouseAction.coerce(a) for a in actions]

        for i, action in enumerate(lcl_actions):
            moved = self.apply_action(i, action)
            logger.debug(f"turn {self.turn + 1}: {self.mice[i].name} {action.describe()} "
                         f"-> {tuple(self.mice[i].position)} {'moved' if moved else 'stayed'}")

        self.turn += 1
        return self.check_game_end()

    def check_game_end(self) -> GameStatus:
        """Settle the outcome after both moves: joint arrival is a draw, the turn limit too."""
        if self.status is not GameStatus.PLAYING:
            return self.status

        first_at_exit = self.mice[0].position == self.maze.exit
        second_at_exit = self.mice[1].position == self.maze.exit

        if first_at_exit and second_at_exit:
            self.status = GameStatus.DRAW
        elif first_at_exit:
            self.status = GameStatus.PLAYER1_WIN
        elif second_at_exit:
            self.status = GameStatus.PLAYER2_WIN
        elif self.turn >= self.max_turns:
            self.status = GameStatus.DRAW

        if self.status.is_terminal:
            logger.info(f"race finished after {self.turn} turns: {self.status.name}")
        return self.status

    @property
    def winner(self) -> Optional[RaceMouse]:
        if self.status is GameStatus.PLAYER1_WIN:
            return self.mice[0]
        if self.status is GameStatus.PLAYER2_WIN:
            return self.mice[1]
        return None

    # --- snapshots ---

    def to_dict(self) -> Dict:
        return {
            'version': __version__,
            'maze': self.maze.to_dict(),
            'max_turns': self.max_turns,
            'turn': self.turn,
            'status': self.status.name,
            'mice': [m.to_dict() for m in self.mice],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RaceGame":
        game = cls(Maze.from_dict(data['maze']), max_turns=data['max_turns'])
        game.turn = int(data.get('turn', 0))
        game.status = GameStatus[data.get('status', 'WAITING')]
        game.mice = [RaceMouse.from_dict(m) for m in data.get('mice', [])]
        return game

    def snapshot(self) -> "RaceGame":
        """Independent deep copy of the current state."""
        return RaceGame.from_dict(self.to_dict())

    def render_ascii(self) -> str:
        return self.maze.render_ascii(mice=self.mice)


def create_maze_preview(size: int = DEFAULT_MAZE_SIZE, *, rng: Optional[random.Random] = None) -> MazeResult:
    """Generate a maze for display before a match is committed to it."""
    return generate_maze(size, rng=rng)


def write_json(*, fname_out, data) -> bool:
    try:
        with open(fname_out, 'w') as jsonfile:
            json.dump(data, jsonfile, indent=4)
        return True
    except (OSError, TypeError) as e:
        logger.error(f"could not write '{fname_out}': {type(e).__name__}: {e}")
        return False
