import json
import random

import pytest

from aarace_game import (
    CellView,
    GameFullError,
    GameRuleError,
    GameStateError,
    GameStatus,
    InvalidPlayerError,
    MouseAction,
    RaceGame,
    Turn,
    cast_line_of_sight,
    create_maze_preview,
    render_memory_map,
    write_json,
)
from aarace_maze import Facing, Maze, Position

STAY = MouseAction()
FORWARD = MouseAction(move=True)


def test_create_game_initial_state():
    game = RaceGame.create(15, 200, rng=random.Random(0))
    assert game.mice == []
    assert game.turn == 0
    assert game.max_turns == 200
    assert game.status is GameStatus.WAITING
    assert game.maze.size == 15


def test_max_turns_defaults_to_half_the_area():
    assert RaceGame.create(15, rng=random.Random(0)).max_turns == 112
    assert RaceGame.create(8, rng=random.Random(0)).max_turns == 40


def test_create_from_preview_keeps_the_maze():
    preview = create_maze_preview(11, rng=random.Random(5))
    game = RaceGame.create(preview=preview)
    assert game.maze is preview.maze
    assert game.max_turns == 60


def test_first_player_waits_second_starts(test_maze):
    game = RaceGame(test_maze)
    mouse = game.add_player("Player 1", "Go right")

    assert mouse.position == test_maze.entrance
    assert mouse.facing is Facing.EAST
    assert game.status is GameStatus.WAITING

    game.add_player("Player 2", "Go left")
    assert game.status is GameStatus.PLAYING
    assert game.turn == 0


def test_third_player_is_rejected(playing_game):
    with pytest.raises(GameFullError, match="Game already has 2 players"):
        playing_game.add_player("Player 3", "Go up")
    assert len(playing_game.mice) == 2


def test_initial_cast_explores_front_left_right(test_maze):
    game = RaceGame(test_maze)
    mouse = game.add_player("Player 1", "Go right")

    assert {Position(1, 1), Position(2, 1), Position(1, 0), Position(1, 2)} <= mouse.explored
    # the east cast runs along the corridor and stops on the wall
    assert Position(3, 1) in mouse.explored
    assert Position(4, 1) in mouse.explored
    assert Position(3, 2) not in mouse.explored


def test_line_of_sight_stops_at_first_wall(test_maze):
    cells = list(cast_line_of_sight(test_maze, Position(1, 1), Facing.EAST))
    assert cells == [Position(2, 1), Position(3, 1), Position(4, 1)]
    assert list(cast_line_of_sight(test_maze, Position(1, 1), Facing.NORTH)) == [Position(1, 0)]
    # boundary: nothing beyond the edge
    assert list(cast_line_of_sight(test_maze, Position(4, 1), Facing.EAST)) == []


def test_vision_snapshot_at_start(playing_game):
    vision = playing_game.get_mouse_vision(0)

    assert vision.position == Position(1, 1)
    assert vision.facing is Facing.EAST
    assert vision.front is CellView.PATH
    assert vision.left is CellView.WALL
    assert vision.right is CellView.WALL
    assert vision.exit_visible is None
    # both mice share the entrance, which is in memory
    assert vision.opponent_visible == Position(1, 1)
    assert vision.turn == 1
    assert vision.explored_map == "\n".join(["#???", ">..#", "#???"])
    assert vision.format() == "FRONT: path\nLEFT: wall\nRIGHT: wall"


def test_vision_sees_start_and_exit(playing_game):
    playing_game.apply_action(0, FORWARD)
    playing_game.apply_action(0, FORWARD)
    vision = playing_game.get_mouse_vision(0)
    assert vision.exit_visible == Position(3, 3)
    assert vision.right is CellView.PATH

    playing_game.apply_action(0, MouseAction(turn=Turn.RIGHT, move=True))
    assert playing_game.get_mouse_vision(0).front is CellView.EXIT

    playing_game.apply_action(1, FORWARD)
    playing_game.apply_action(1, MouseAction(turn=Turn.RIGHT))
    playing_game.apply_action(1, MouseAction(turn=Turn.RIGHT))
    assert playing_game.get_mouse_vision(1).front is CellView.START


def test_opponent_visibility_follows_memory(playing_game):
    for _ in range(2):
        playing_game.apply_action(0, FORWARD)
    playing_game.apply_action(0, MouseAction(turn=Turn.RIGHT, move=True))
    # mouse 1 still sits on the entrance, which mouse 0 saw at the start
    assert playing_game.get_mouse_vision(0).opponent_visible == Position(1, 1)
    # mouse 1 never looked down the east corridor's south branch
    assert playing_game.get_mouse_vision(1).opponent_visible is None


def test_move_turn_and_bump(playing_game):
    assert playing_game.apply_action(0, FORWARD) is True
    mouse = playing_game.mice[0]
    assert mouse.position == Position(2, 1)

    assert playing_game.apply_action(0, MouseAction(turn=Turn.RIGHT, move=False)) is False
    assert mouse.facing is Facing.SOUTH
    assert mouse.position == Position(2, 1)

    # (2, 2) is a wall: no move, but the action is still recorded
    explored_before = set(mouse.explored)
    assert playing_game.apply_action(0, FORWARD) is False
    assert mouse.position == Position(2, 1)
    assert len(mouse.action_history) == 3
    assert explored_before <= mouse.explored


def test_move_off_grid_is_a_no_op():
    maze = Maze.from_rows([[1, 1, 1], [0, 0, 0], [1, 1, 1]], entrance=Position(0, 1), exit=Position(2, 1))
    game = RaceGame(maze)
    game.add_player("a", "x")
    game.add_player("b", "y")
    game.apply_action(0, MouseAction(turn=Turn.RIGHT))
    assert game.apply_action(0, MouseAction(turn=Turn.RIGHT, move=True)) is False
    assert game.mice[0].facing is Facing.WEST
    assert game.mice[0].position == Position(0, 1)


@pytest.mark.parametrize("turn", [Turn.LEFT, Turn.RIGHT])
def test_four_quarter_turns_are_identity(playing_game, turn):
    mouse = playing_game.mice[0]
    for _ in range(4):
        playing_game.apply_action(0, MouseAction(turn=turn))
    assert mouse.facing is Facing.EAST


def test_left_then_right_is_identity(playing_game):
    mouse = playing_game.mice[1]
    for facing in Facing:
        mouse.facing = facing
        playing_game.apply_action(1, MouseAction(turn=Turn.LEFT))
        playing_game.apply_action(1, MouseAction(turn=Turn.RIGHT))
        assert mouse.facing is facing


def test_fresh_game_is_playing_at_turn_zero(playing_game):
    assert playing_game.status is GameStatus.PLAYING
    assert playing_game.turn == 0
    assert playing_game.check_game_end() is GameStatus.PLAYING


def test_first_mouse_at_exit_wins(playing_game):
    playing_game.mice[0].position = Position(3, 3)
    assert playing_game.check_game_end() is GameStatus.PLAYER1_WIN
    assert playing_game.winner is playing_game.mice[0]


def test_second_mouse_at_exit_wins(playing_game):
    playing_game.mice[1].position = Position(3, 3)
    assert playing_game.check_game_end() is GameStatus.PLAYER2_WIN
    assert playing_game.winner is playing_game.mice[1]


def test_both_at_exit_is_a_draw(playing_game):
    playing_game.mice[0].position = Position(3, 3)
    playing_game.mice[1].position = Position(3, 3)
    assert playing_game.check_game_end() is GameStatus.DRAW
    assert playing_game.winner is None


def test_turn_limit_is_a_draw(playing_game):
    playing_game.turn = playing_game.max_turns
    assert playing_game.check_game_end() is GameStatus.DRAW


def test_race_to_the_exit(playing_game):
    script = [FORWARD, FORWARD, MouseAction(turn=Turn.RIGHT, move=True), FORWARD]
    for action in script:
        status = playing_game.execute_turn([action, STAY])

    assert status is GameStatus.PLAYER1_WIN
    assert playing_game.turn == 4
    assert playing_game.mice[0].position == Position(3, 3)
    assert len(playing_game.mice[1].action_history) == 4


def test_simultaneous_arrival_is_a_draw(playing_game):
    script = [FORWARD, FORWARD, MouseAction(turn=Turn.RIGHT, move=True), FORWARD]
    for action in script:
        status = playing_game.execute_turn([action, action.to_dict()])
    assert status is GameStatus.DRAW


def test_turn_limit_ends_race(test_maze):
    game = RaceGame(test_maze, max_turns=3)
    game.add_player("a", "x")
    game.add_player("b", "y")
    for _ in range(3):
        game.execute_turn([STAY, STAY])
    assert game.status is GameStatus.DRAW
    assert game.turn == 3


def test_terminal_state_is_absorbing(playing_game):
    playing_game.mice[0].position = Position(3, 3)
    playing_game.check_game_end()

    with pytest.raises(GameStateError):
        playing_game.execute_turn([FORWARD, FORWARD])
    with pytest.raises(GameStateError):
        playing_game.apply_action(1, FORWARD)
    assert playing_game.turn == 0
    assert playing_game.mice[1].action_history == []


def test_contract_violations_leave_state_untouched(test_maze):
    game = RaceGame(test_maze)
    game.add_player("a", "x")

    with pytest.raises(GameStateError):
        game.apply_action(0, FORWARD)
    with pytest.raises(GameStateError):
        game.execute_turn([FORWARD, FORWARD])
    assert game.mice[0].action_history == []

    game.add_player("b", "y")
    with pytest.raises(InvalidPlayerError):
        game.apply_action(2, FORWARD)
    with pytest.raises(InvalidPlayerError):
        game.get_mouse_vision(-1)
    with pytest.raises(ValueError):
        game.execute_turn([FORWARD, "jump"])
    with pytest.raises(GameRuleError):
        game.add_player("c", "z")
    assert game.mice[0].action_history == []
    assert game.mice[0].position == Position(1, 1)
    assert game.turn == 0


def test_join_after_start_is_rejected(test_maze):
    game = RaceGame(test_maze, max_turns=1)
    game.add_player("a", "x")
    game.add_player("b", "y")
    game.execute_turn([STAY, STAY])
    game.mice.pop()
    with pytest.raises(GameStateError):
        game.add_player("c", "z")


def test_action_from_dict():
    assert MouseAction.from_dict({'turn': 'left', 'move': True}) == MouseAction(turn=Turn.LEFT, move=True)
    assert MouseAction.from_dict({'move': False}) == STAY
    with pytest.raises(ValueError):
        MouseAction.from_dict({'turn': 'AROUND', 'move': True})
    for move in ('no', 'false', 1, None):
        with pytest.raises(ValueError):
            MouseAction.from_dict({'turn': None, 'move': move})


def test_explored_memory_only_grows():
    game = RaceGame.create(21, 500, rng=random.Random(7))
    game.add_player("a", "x")
    game.add_player("b", "y")
    rng = random.Random(11)
    choices = [STAY, FORWARD, MouseAction(turn=Turn.LEFT), MouseAction(turn=Turn.RIGHT, move=True)]

    previous = [set(m.explored) for m in game.mice]
    while game.status is GameStatus.PLAYING:
        game.execute_turn([rng.choice(choices), rng.choice(choices)])
        for i, mouse in enumerate(game.mice):
            assert previous[i] <= mouse.explored
            assert mouse.position in mouse.explored
            assert game.maze.is_free(pos=mouse.position)
            previous[i] = set(mouse.explored)
        assert game.turn <= game.max_turns


def test_full_grid_memory_map(playing_game):
    mouse = playing_game.mice[0]
    full = render_memory_map(playing_game.maze, mouse, crop=False)
    assert full.splitlines() == ["?#???", "?>..#", "?#???", "?????", "?????"]


def test_snapshot_round_trip_is_independent(playing_game, tmp_path):
    playing_game.execute_turn([FORWARD, MouseAction(turn=Turn.LEFT)])
    data = playing_game.to_dict()
    json.dumps(data)

    clone = RaceGame.from_dict(data)
    assert clone.turn == 1
    assert clone.status is GameStatus.PLAYING
    assert clone.mice[0].position == Position(2, 1)
    assert clone.mice[1].facing is Facing.NORTH
    assert clone.mice[0].explored == playing_game.mice[0].explored
    assert clone.mice[1].action_history == [MouseAction(turn=Turn.LEFT)]

    clone.mice[0].explored.add(Position(0, 0))
    assert Position(0, 0) not in playing_game.mice[0].explored

    snap = playing_game.snapshot()
    snap.execute_turn([FORWARD, FORWARD])
    assert playing_game.turn == 1

    out = tmp_path / "game.json"
    assert write_json(fname_out=str(out), data=data)
    assert json.loads(out.read_text())["turn"] == 1


def test_memory_map_marks_entrance_opponent_and_exit(playing_game):
    playing_game.execute_turn([FORWARD, FORWARD])
    playing_game.execute_turn([FORWARD, STAY])
    playing_game.execute_turn([MouseAction(turn=Turn.RIGHT, move=True), STAY])

    vision = playing_game.get_mouse_vision(0)
    assert vision.position == Position(3, 2)
    assert vision.exit_visible == Position(3, 3)
    assert vision.opponent_visible == Position(2, 1)
    assert vision.explored_map.splitlines() == [
        "###?",
        "SO.#",
        "##v#",
        "??E?",
        "??#?",
    ]
