"""Drives a maze race turn by turn, isolated from transport and storage."""

import argparse
import asyncio
import inspect
import logging
import random
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from aarace_config import LOG_LEVEL, RaceSettings, setup_logging, validate_player_name, validate_strategy
from aarace_game import GameStatus, MouseAction, MouseVision, RaceGame, write_json
from aagentic_race import AAgenticRacer, ActionResult, ActionsResult, default_action

__version__ = '20261019_1204'

logger = logging.getLogger(__name__)


class MatchAlreadyRunningError(RuntimeError):
    pass


@dataclass
class PlayerConfig:
    name: str
    strategy: str


@dataclass
class TurnInfo:
    """What happened in one turn: the pre-turn visions and the actions applied."""
    actions: Tuple[MouseAction, MouseAction]
    visions: Tuple[MouseVision, MouseVision]
    results: Tuple[ActionResult, ActionResult]


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


def _usable_actions(provided: Optional[ActionsResult],
                    visions: Tuple[MouseVision, MouseVision]) -> Tuple[Tuple[MouseAction, MouseAction],
                                                                       Tuple[ActionResult, ActionResult]]:
    """Keep valid provider actions, substitute the default action for anything else."""
    actions, results = [], []
    for i, vision in enumerate(visions):
        action, result = None, None
        try:
            action = MouseAction.coerce(provided.actions[i])
            result = provided.results[i] if provided.results else None
        except (AttributeError, IndexError, TypeError, ValueError):
            action = None
        if action is None:
            action = default_action(vision)
            result = ActionResult(action=action, reasoning="no usable action", fallback=True)
            logger.warning(f"no usable action for mouse {i}, using default '{action.describe()}'")
        elif not isinstance(result, ActionResult):
            result = ActionResult(action=action)
        actions.append(action)
        results.append(result)
    return (actions[0], actions[1]), (results[0], results[1])


async def run_game(
        player1: PlayerConfig,
        player2: PlayerConfig,
        *,
        action_provider,
        maze_size: int = 15,
        max_turns: Optional[int] = None,
        on_turn: Optional[Callable] = None,
        on_game_end: Optional[Callable] = None,
        cancel_event: Optional[asyncio.Event] = None,
        game: Optional[RaceGame] = None,
        rng: Optional[random.Random] = None,
) -> RaceGame:
    """
    Run one race from the first turn to a terminal status (or cancellation).

    Args:
        player1, player2: names and strategies, in player order
        action_provider: object with `async get_actions(strategy_a, vision_a, strategy_b, vision_b)`
        maze_size: side of the generated maze, ignored when `game` is given
        max_turns: turn ceiling, defaults to half the maze area
        on_turn: `callback(snapshot_dict, turn_number, TurnInfo)`, sync or async
        on_game_end: `callback(snapshot_dict)`, called exactly once when the loop exits
        cancel_event: checked before every turn; once set, no further turn is applied
        game: a WAITING game to play on instead of generating one

    Returns:
        RaceGame: the final game state
    """
    if game is None:
        game = RaceGame.create(maze_size, max_turns, rng=rng)
    game.add_player(player1.name, player1.strategy)
    game.add_player(player2.name, player2.strategy)

    while game.status is GameStatus.PLAYING:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"race cancelled before turn {game.turn + 1}")
            break

        visions = (game.get_mouse_vision(0), game.get_mouse_vision(1))

        try:
            provided = await action_provider.get_actions(player1.strategy, visions[0],
                                                         player2.strategy, visions[1])
        except Exception as e:
            logger.warning(f"action provider failed ({type(e).__name__}: {e}), using default actions")
            provided = None

        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"race cancelled during turn {game.turn + 1}, actions dropped")
            break

        actions, results = _usable_actions(provided, visions)
        game.execute_turn(actions)

        if on_turn is not None:
            await _maybe_await(on_turn(game.to_dict(), game.turn, TurnInfo(actions, visions, results)))

    if on_game_end is not None:
        await _maybe_await(on_game_end(game.to_dict()))
    return game


class MatchRunner:
    """
    Owns one match: its game, its observers and its loop.

    Only one loop may run per runner at a time. Observers receive
    `(event, payload)` with event "turn" (payload: snapshot, turn, info) or
    "end" (payload: snapshot), always after a turn has fully completed.
    """

    def __init__(
            self,
            match_id: str,
            player1: PlayerConfig,
            player2: PlayerConfig,
            *,
            action_provider,
            maze_size: int = 15,
            max_turns: Optional[int] = None,
            game: Optional[RaceGame] = None,
            rng: Optional[random.Random] = None,
    ):
        self.match_id = match_id
        self.player1 = player1
        self.player2 = player2
        self.action_provider = action_provider
        self.game = game or RaceGame.create(maze_size, max_turns, rng=rng)
        self.error: Optional[BaseException] = None
        self._observers: List[Callable] = []
        self._cancel_event: Optional[asyncio.Event] = None
        self._cancelled = False
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, callback: Callable) -> Callable[[], None]:
        """Register an observer, returns a function that removes it again."""
        self._observers.append(callback)

        def unsubscribe():
            if callback in self._observers:
                self._observers.remove(callback)
        return unsubscribe

    def cancel(self):
        self._cancelled = True
        if self._cancel_event is not None:
            self._cancel_event.set()

    async def _publish(self, event: str, *payload):
        for callback in list(self._observers):
            try:
                await _maybe_await(callback(event, *payload))
            except Exception as e:
                logger.exception(f"[{self.match_id}] observer failed on '{event}': {e}")

    async def _on_turn(self, snapshot: Dict, turn: int, info: TurnInfo):
        await self._publish("turn", snapshot, turn, info)

    async def _on_game_end(self, snapshot: Dict):
        await self._publish("end", snapshot)

    async def run(self) -> RaceGame:
        """Play the match; an unexpected failure is logged and kept on `error`."""
        if self._running:
            raise MatchAlreadyRunningError(f"match {self.match_id} is already running")
        self._running = True
        # created inside the loop that runs the match
        self._cancel_event = asyncio.Event()
        if self._cancelled:
            self._cancel_event.set()
        start = time.time()
        try:
            logger.info(f"[{self.match_id}] {self.player1.name} vs {self.player2.name} "
                        f"on {self.game.maze.size}x{self.game.maze.size}")
            await run_game(
                self.player1, self.player2,
                action_provider=self.action_provider,
                on_turn=self._on_turn,
                on_game_end=self._on_game_end,
                cancel_event=self._cancel_event,
                game=self.game,
            )
            logger.info(f"[{self.match_id}] {self.game.status.name} after {self.game.turn} turns "
                        f"({time.time() - start:.1f} seconds)")
        except Exception as e:
            self.error = e
            logger.exception(f"[{self.match_id}] match aborted: {type(e).__name__}: {e}")
        finally:
            self._running = False
        return self.game


async def run_matches(runners: Sequence[MatchRunner]) -> List[RaceGame]:
    """Run independent matches concurrently, one loop each."""
    return list(await asyncio.gather(*(r.run() for r in runners)))


# === Console ===

def render_turn(game: RaceGame, turn: int, info: TurnInfo) -> str:
    """Full maze, then each mouse's action, vision and memory map."""
    lines = [f"Turn: {turn}/{game.max_turns}", "", "=== FULL MAZE ===", game.render_ascii(), ""]
    for i, (label, mouse) in enumerate(zip(("A", "B"), game.mice)):
        vision = info.visions[i]
        lines.append(f"=== MOUSE {label}: {mouse.name} ===")
        lines.append(f"Action: {info.actions[i].describe()}{' (default)' if info.results[i].fallback else ''}")
        lines.append(f"Vision: {vision.format().replace(chr(10), ' | ')}")
        lines.append("Map:")
        lines.append(vision.explored_map)
        lines.append("")
    return "\n".join(lines)


def describe_result(game: RaceGame) -> str:
    if game.winner is not None:
        return f"Winner: {game.winner.name}!\nStrategy: \"{game.winner.strategy}\""
    if game.status is GameStatus.DRAW:
        return "It's a DRAW!"
    return f"Stopped with status {game.status.name}"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="AI maze battle: two strategies, one maze.")
    parser.add_argument("maze_size", type=int, help="size of the square maze (7-51, odd)")
    parser.add_argument("strategy_a", help="strategy for Mouse A (in quotes)")
    parser.add_argument("strategy_b", help="strategy for Mouse B (in quotes)")
    parser.add_argument("--delay-ms", type=int, default=500, help="delay between turns in milliseconds")
    parser.add_argument("--max-turns", type=int, default=None, help="turn ceiling (10-1000)")
    parser.add_argument("--rule-based", action="store_true", help="use the rule-based racer instead of the LLM")
    parser.add_argument("--seed", type=int, default=None, help="seed for maze generation")
    parser.add_argument("--json-out", default=None, help="write the final game snapshot to this file")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> bool:
    try:
        args = parse_args(argv)
        settings = RaceSettings.from_env(maze_size=args.maze_size, max_turns=args.max_turns)
        player_a = PlayerConfig(validate_player_name("Mouse A"), validate_strategy(args.strategy_a))
        player_b = PlayerConfig(validate_player_name("Mouse B"), validate_strategy(args.strategy_b))

        racer = AAgenticRacer(use_llm=not args.rule_based, model=settings.model, api_key=settings.api_key)
        rng = random.Random(args.seed) if args.seed is not None else None

        print(f"start maze race v.{__version__}")
        print(f"Maze size: {settings.maze_size}x{settings.maze_size}, max turns: {settings.max_turns}")
        print(f"Mouse A: \"{player_a.strategy}\"")
        print(f"Mouse B: \"{player_b.strategy}\"\n")

        async def on_turn(snapshot: Dict, turn: int, info: TurnInfo):
            print(render_turn(RaceGame.from_dict(snapshot), turn, info))
            if snapshot["status"] == GameStatus.PLAYING.name and args.delay_ms > 0:
                await asyncio.sleep(args.delay_ms / 1000)

        final_snapshot: Dict[str, Any] = {}

        game = asyncio.run(run_game(
            player_a, player_b,
            action_provider=racer,
            maze_size=settings.maze_size,
            max_turns=settings.max_turns,
            on_turn=on_turn,
            on_game_end=final_snapshot.update,
            rng=rng,
        ))

        print("\n=== GAME OVER! ===\n")
        print(describe_result(game))
        print(f"\nTotal turns: {game.turn}")

        if args.json_out:
            if write_json(fname_out=args.json_out, data=final_snapshot):
                print(f"... wrote '{args.json_out}'")
        return True
    except Exception as e:
        logger.exception(f"Error in main: {e}")
        return False


if __name__ == "__main__":
    setup_logging(LOG_LEVEL)
    sys.exit(0 if main() else 1)
