"""Maze generation and pathfinding for the AA maze race."""

import logging
import random
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Set

import numpy as np

__version__ = '20261019_1012'

MIN_MAZE_SIZE = 7
GREEDY_BIAS = 0.7
LOG_LEVEL = logging.INFO

logger = logging.getLogger(__name__)


class Position(NamedTuple):
    """Grid coordinate, x grows to the east and y to the south."""
    x: int
    y: int


class Cell(IntEnum):
    """Grid encoding, same as the numpy array: 1=wall, 0=free."""
    PATH = 0
    WALL = 1


class Facing(Enum):
    """Compass facing of a mouse, value is the (dx, dy) step."""

    NORTH = (0, -1)
    EAST = (1, 0)
    SOUTH = (0, 1)
    WEST = (-1, 0)

    @property
    def arrow(self) -> str:
        return ARROWS[self]

    def turn_left(self) -> "Facing":
        return DIR_ORDER[(DIR_ORDER.index(self) - 1) % 4]

    def turn_right(self) -> "Facing":
        return DIR_ORDER[(DIR_ORDER.index(self) + 1) % 4]

    def step(self, pos: Position) -> Position:
        """Return the cell one step from pos in this facing."""
        dx, dy = self.value
        return Position(pos.x + dx, pos.y + dy)


DIR_ORDER = [Facing.NORTH, Facing.EAST, Facing.SOUTH, Facing.WEST]
ARROWS = {Facing.NORTH: '^', Facing.EAST: '>', Facing.SOUTH: 'v', Facing.WEST: '<'}

# lattice moves, two cells away so a wall cell always sits in between
LATTICE_STEPS = [(0, -2), (0, 2), (-2, 0), (2, 0)]


class Maze:
    """Square maze grid with an entrance and an exit."""

    def __init__(
        self, *,
        grid: np.ndarray,
        entrance: Position,
        exit: Position,
    ):
        self.grid = np.array(grid, dtype=int)
        self.rows, self.cols = self.grid.shape
        if self.rows != self.cols:
            raise ValueError(f"maze must be square, got {self.rows}x{self.cols}")
        self.size = self.rows
        self.entrance = Position(*entrance)
        self.exit = Position(*exit)

        # Validate positions
        for pos, name in [(self.entrance, "entrance"), (self.exit, "exit")]:
            if not self.is_free(pos=pos):
                raise ValueError(f"{name} {tuple(pos)} must be on a free cell")

        # generation is the only mutation phase
        self.grid.setflags(write=False)

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence], *, entrance: Position, exit: Position) -> "Maze":
        """Build a maze from nested rows of 0/1, Cell members or 'WALL'/'PATH' strings."""
        def _cell(value) -> int:
            if isinstance(value, str):
                return int(Cell[value.upper()])
            return int(value)

        grid = np.array([[_cell(v) for v in row] for row in rows], dtype=int)
        return cls(grid=grid, entrance=entrance, exit=exit)

    def in_bounds(self, *, pos: Position) -> bool:
        x, y = pos
        return 0 <= x < self.cols and 0 <= y < self.rows

    def cell(self, *, pos: Position) -> Cell:
        """Cell type at pos, out-of-bounds counts as wall."""
        if not self.in_bounds(pos=pos):
            return Cell.WALL
        x, y = pos
        return Cell(int(self.grid[y, x]))

    def is_free(self, *, pos: Position) -> bool:
        """Check if position is within bounds and not a wall."""
        try:
            x, y = pos
            return bool(0 <= y < self.rows and 0 <= x < self.cols and self.grid[y, x] == Cell.PATH)
        except (TypeError, ValueError, IndexError):
            return False

    def render_ascii(self, *, mice: Optional[Sequence] = None, path: Optional[Iterable[Position]] = None) -> str:
        """Render maze as ASCII art."""
        return maze_to_ascii(self, mice=mice, path=path)

    def prepare_render(self, *, mice: Sequence = ()) -> Dict:
        """Plain-data payload for drawing the maze and the mice with matplotlib."""
        COLORS = {
            "wall_gray": "#6E6E6E",
            "start_green": "#009E73",
            "goal_red": "#D55E00",
            "mice": ["#F0E442", "#56B4E9"],
            "explored": ["#E8DC62", "#A6D5F7"],
        }

        # sizes (data units, i.e., fractions of a cell)
        R = {"start_goal": 0.30, "mouse": 0.32, "explored": 0.10}

        mice_payload = []
        for i, mouse in enumerate(mice):
            others = {self.entrance, self.exit, mouse.position}
            mice_payload.append({
                "name": mouse.name,
                "rc": (mouse.position.y, mouse.position.x),
                "radius": R["mouse"],
                "facecolor": COLORS["mice"][i % 2],
                "label": {"text": mouse.facing.arrow, "color": "black", "weight": "bold"},
                "explored": {
                    "points": [(p.y, p.x) for p in sorted(mouse.explored) if p not in others and self.is_free(pos=p)],
                    "radius": R["explored"],
                    "facecolor": COLORS["explored"][i % 2],
                    "alpha": 0.5,
                },
            })

        return {
            "extent": {"rows": self.rows, "cols": self.cols},
            "background": {"array": self.grid.tolist()},  # 0 free, 1 wall
            "start": {"rc": (self.entrance.y, self.entrance.x), "radius": R["start_goal"],
                      "facecolor": COLORS["start_green"]},
            "goal": {"rc": (self.exit.y, self.exit.x), "radius": R["start_goal"],
                     "facecolor": COLORS["goal_red"]},
            "mice": mice_payload,
            "styles": {"walls": {"color": COLORS["wall_gray"]}, "title": "Maze Race"},
        }

    def to_dict(self) -> Dict:
        return {
            "grid": self.grid.tolist(),
            "entrance": self.entrance._asdict(),
            "exit": self.exit._asdict(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Maze":
        return cls(
            grid=np.array(data["grid"], dtype=int),
            entrance=Position(**data["entrance"]),
            exit=Position(**data["exit"]),
        )


@dataclass
class MazeResult:
    """A generated maze plus the guaranteed route carved first."""
    maze: Maze
    solution_path: List[Position] = field(default_factory=list)

    @property
    def entrance(self) -> Position:
        return self.maze.entrance

    @property
    def exit(self) -> Position:
        return self.maze.exit


def normalize_size(size: int) -> int:
    """Force an odd maze size, rejecting anything below the lattice minimum."""
    lcl_size = int(size)
    if lcl_size % 2 == 0:
        lcl_size += 1
    if lcl_size < MIN_MAZE_SIZE:
        raise ValueError(f"maze size must be at least {MIN_MAZE_SIZE}, got {size}")
    return lcl_size


def generate_maze(size: int, *, rng: Optional[random.Random] = None) -> MazeResult:
    """
    Generate a maze by carving a guaranteed entrance-to-exit route first and
    then growing branches off it, so the result is solvable by construction.

    Parameters
    ----------
    size : int
        Requested side length, even values are bumped to the next odd number.
    rng : random.Random, optional
        Source of randomness, pass a seeded instance for reproducible mazes.

    Returns
    -------
    MazeResult
        The maze and the solution path that was carved first.
    """
    rng = rng or random.Random()
    maze_size = normalize_size(size)

    grid = np.full((maze_size, maze_size), Cell.WALL, dtype=int)

    entrance = Position(1, _pick_edge_row(maze_size, rng=rng))
    exit_ = Position(maze_size - 2, _pick_edge_row(maze_size, rng=rng))

    solution_path = _random_walk(entrance, exit_, maze_size, rng=rng)
    for pos in solution_path:
        grid[pos.y, pos.x] = Cell.PATH

    _add_branch_paths(grid, solution_path, maze_size, rng=rng)

    maze = Maze(grid=grid, entrance=entrance, exit=exit_)
    logger.debug(f"{maze_size}x{maze_size} maze generated, entrance@{tuple(entrance)}, "
                 f"exit@{tuple(exit_)}, solution length {len(solution_path)}")
    return MazeResult(maze=maze, solution_path=solution_path)


def _pick_edge_row(size: int, *, rng: random.Random) -> int:
    """Random odd row, so edge cells sit on the carving lattice."""
    return rng.choice(range(1, size - 1, 2))


def _inside(x: int, y: int, size: int) -> bool:
    return 0 < x < size - 1 and 0 < y < size - 1


def _walk_candidates(pos: Position, size: int, visited: Set[Position], target: Position) -> List[Position]:
    candidates = []
    for dx, dy in LATTICE_STEPS:
        nxt = Position(pos.x + dx, pos.y + dy)
        if not _inside(nxt.x, nxt.y, size):
            continue
        if nxt not in visited or nxt == target:
            candidates.append(nxt)
    return candidates


def _pick_biased(candidates: List[Position], target: Position, *, rng: random.Random) -> Position:
    if rng.random() < GREEDY_BIAS:
        return min(candidates, key=lambda p: manhattan_distance(p, target))
    return rng.choice(candidates)


def _random_walk(start: Position, end: Position, size: int, *, rng: random.Random) -> List[Position]:
    """Biased random walk on the odd lattice, connector cells included."""
    path = [start]
    visited = {start}
    current = start
    restarts = 0

    while current != end:
        candidates = _walk_candidates(current, size, visited, end)

        if not candidates:
            # dead end: drop the node and the connector that led to it
            del path[-2:]
            if not path:
                restarts += 1
                path = [start]
                visited = {start}
                current = start
                continue
            current = path[-1]
            continue

        nxt = _pick_biased(candidates, end, rng=rng)
        between = Position((current.x + nxt.x) // 2, (current.y + nxt.y) // 2)
        visited.add(between)
        visited.add(nxt)
        path.append(between)
        path.append(nxt)
        current = nxt

    if restarts:
        logger.debug(f"solution walk restarted {restarts} times")
    return path


def _add_branch_paths(grid: np.ndarray, solution_path: List[Position], size: int, *, rng: random.Random):
    """Grow recursive-backtracker branches off the lattice nodes of the solution path."""
    visited = set(solution_path)
    branch_points = solution_path[::2]
    rng.shuffle(branch_points)
    for start in branch_points:
        _carve_from(grid, start, size, visited, rng=rng)


def _carve_from(grid: np.ndarray, start: Position, size: int, visited: Set[Position], *, rng: random.Random):
    stack = [start]
    while stack:
        current = stack[-1]
        candidates = [
            Position(current.x + dx, current.y + dy) for dx, dy in LATTICE_STEPS
            if _inside(current.x + dx, current.y + dy, size)
            and Position(current.x + dx, current.y + dy) not in visited
        ]
        if not candidates:
            stack.pop()
            continue

        nxt = rng.choice(candidates)
        wall = Position((current.x + nxt.x) // 2, (current.y + nxt.y) // 2)
        grid[wall.y, wall.x] = Cell.PATH
        grid[nxt.y, nxt.x] = Cell.PATH
        visited.add(wall)
        visited.add(nxt)
        stack.append(nxt)


def manhattan_distance(a: Position, b: Position) -> int:
    return abs(a[0] - b[0]) + abs(a[1] - b[1])


def _bfs(maze: Maze, start: Position, end: Position) -> Optional[Dict[Position, Optional[Position]]]:
    """Breadth-first search, returns the parent map once end is reached."""
    start, end = Position(*start), Position(*end)
    parents: Dict[Position, Optional[Position]] = {start: None}
    queue = deque([start])

    while queue:
        current = queue.popleft()
        if current == end:
            return parents
        for facing in DIR_ORDER:
            nxt = facing.step(current)
            if nxt not in parents and maze.is_free(pos=nxt):
                parents[nxt] = current
                queue.append(nxt)
    return None


def has_path(maze: Maze, start: Position, end: Position) -> bool:
    """Check if end is reachable from start over free cells."""
    return _bfs(maze, start, end) is not None


def find_path(maze: Maze, start: Position, end: Position) -> Optional[List[Position]]:
    """Shortest 4-directional path from start to end (both included), or None."""
    parents = _bfs(maze, start, end)
    if parents is None:
        return None
    path = []
    node: Optional[Position] = Position(*end)
    while node is not None:
        path.append(node)
        node = parents[node]
    path.reverse()
    return path


def maze_to_ascii(maze: Maze, *, mice: Optional[Sequence] = None, path: Optional[Iterable[Position]] = None) -> str:
    """
    Render the full maze for diagnostics.

    Mice may be given as mouse objects (drawn as facing arrows) or as bare
    positions (drawn as 1, 2, ...). A mouse on the entrance or exit hides it.
    """
    path_set = set(path) if path else set()
    marks: Dict[Position, str] = {}
    for i, mouse in enumerate(mice or []):
        if hasattr(mouse, 'facing'):
            marks.setdefault(Position(*mouse.position), mouse.facing.arrow)
        else:
            marks.setdefault(Position(*mouse), str(i + 1))

    rows = []
    for y in range(maze.rows):
        row_chars = []
        for x in range(maze.cols):
            pos = Position(x, y)
            if pos in marks:
                char = marks[pos]
            elif pos == maze.entrance:
                char = "S"
            elif pos == maze.exit:
                char = "E"
            elif pos in path_set:
                char = "*"
            elif maze.grid[y, x] == Cell.WALL:
                char = "#"
            else:
                char = "."
            row_chars.append(char)
        rows.append("".join(row_chars))
    return "\n".join(rows)


def main():
    """Generate a maze and print it with its solution."""
    try:
        result = generate_maze(15)
        print(maze_to_ascii(result.maze, path=result.solution_path))
        shortest = find_path(result.maze, result.entrance, result.exit)
        print(f"\nsolution path: {len(result.solution_path)} cells, shortest path: {len(shortest)} cells")
        return True
    except Exception as e:
        logger.exception(f"Error in main: {e}")
        return False


if __name__ == "__main__":
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s]: %(message)s"
    )
    main()
