"""LLM and rule-based racers that turn a mouse's vision and strategy into an action."""

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, TypedDict

from langchain_openai import ChatOpenAI
from langgraph.graph import END, StateGraph

from aarace_config import MODEL
from aarace_game import CellView, MouseAction, MouseVision, Turn

__version__ = '20261019_1131'

HISTORY_WINDOW = 5

# Regular expressions to parse LLM action responses
TURN_RE = re.compile(r'^\s*\**turn\**\s*:\s*\**\s*(left|right|none)\b', re.IGNORECASE | re.MULTILINE)
MOVE_RE = re.compile(r'^\s*\**move\**\s*:\s*\**\s*(yes|no|true|false)\b', re.IGNORECASE | re.MULTILINE)

SYSTEM_PROMPT = """You are a mouse in a maze race. Find the exit (E) before your opponent.

## Map Symbols
- ^ v < > = You (arrow shows facing direction)
- S = Start
- E = Exit (goal)
- O = Opponent
- # = Wall
- . = Path
- ? = Unexplored

## Turn Rules
- First look at what you can see (front, left, right)
- Then optionally turn left or right, never both
- Then optionally move one step forward
- You MUST follow your owner's strategy exactly!"""

logger = logging.getLogger(__name__)


# State definition for the LangGraph workflow
class RaceState(TypedDict):
    """State structure that flows through the racer's decision-making graph"""
    vision: MouseVision          # Vision snapshot for this turn
    strategy: str                # Natural language strategy
    history: List[str]           # Recent actions for LLM context
    last_result: Optional[Dict]  # Decision produced by the graph


@dataclass
class ActionResult:
    """One mouse's decision plus how it was reached."""
    action: MouseAction
    reasoning: str = ""
    fallback: bool = False


@dataclass
class ActionsResult:
    actions: Tuple[MouseAction, MouseAction]
    results: Tuple[ActionResult, ActionResult]


def default_action(vision: MouseVision) -> MouseAction:
    """
    Safe action when no usable decision is available.

    Move forward if the way ahead is open, otherwise turn toward an open side
    (right first), otherwise turn right.
    """
    if vision.front is not CellView.WALL:
        return MouseAction(move=True)
    if vision.right is not CellView.WALL:
        return MouseAction(turn=Turn.RIGHT)
    if vision.left is not CellView.WALL:
        return MouseAction(turn=Turn.LEFT)
    return MouseAction(turn=Turn.RIGHT)


def format_history(actions: List[MouseAction]) -> List[str]:
    return [a.describe() for a in actions[-HISTORY_WINDOW:]]


def build_user_prompt(strategy: str, vision: MouseVision, history: List[str]) -> str:
    exit_line = (f"Exit visible at ({vision.exit_visible.x}, {vision.exit_visible.y})"
                 if vision.exit_visible else "Exit not yet visible")
    opponent_line = (f"Opponent visible at ({vision.opponent_visible.x}, {vision.opponent_visible.y})"
                     if vision.opponent_visible else "Opponent not in sight")
    history_text = ", ".join(history) if history else "just started"

    return f"""## YOUR STRATEGY (follow this exactly!)
"{strategy}"

Turn: {vision.turn}, Facing: {vision.facing.name.lower()}
{exit_line}
{opponent_line}

## What you see:
{vision.format()}

## Memory map:
{vision.explored_map}

RECENT ACTIONS: {history_text}

RESPONSE FORMAT:
Reasoning: [Your step-by-step analysis applying the strategy to current situation]
Turn: [left/right/none]
Move: [yes/no]"""


class AAgenticRacer:
    """
    Action-provider for a maze race using a LangGraph workflow.

    Each mouse's decision runs through a single-node graph, either asking an
    OpenAI chat model or applying a rule-based wall follower. Whatever goes
    wrong in a decision ends in the default action, never in an exception.
    """

    def __init__(
        self, *,
        use_llm: bool = True,
        model: str = MODEL,
        api_key: Optional[str] = None,
        temperature: float = 0.3,
        llm=None,
    ):
        """
        Args:
            use_llm: Whether to use LLM or rule-based decision making
            model: OpenAI model to use if use_llm=True
            api_key: OpenAI key, falls back to OPENAI_API_KEY
            temperature: Sampling temperature for the model
            llm: Prebuilt chat model exposing `ainvoke`, overrides model/api_key
        """
        try:
            self.use_llm = use_llm
            self.model = model
            self.llm = llm
            if self.use_llm and self.llm is None:
                api_token = api_key or os.getenv("OPENAI_API_KEY")
                self.llm = ChatOpenAI(model=self.model, temperature=temperature, api_key=api_token)

            self.graph_app = None
            self.is_initialized = False
        except Exception as e:
            logger.exception(f"{type(e).__name__}: {e}")
            raise

        logger.debug(f"AAgenticRacer initialized, use_llm={use_llm}, model={model}")

    def _build_workflow(self):
        """
        Single decision node: vision + strategy in, action out.

        Returns:
            Compiled workflow graph ready for execution
        """
        workflow = StateGraph(RaceState)
        workflow.add_node("agent_decision", self._agent_decision_node)
        workflow.set_entry_point("agent_decision")
        workflow.add_edge("agent_decision", END)
        return workflow.compile()

    def _initialize_workflow(self):
        if self.is_initialized:
            return
        self.graph_app = self._build_workflow()
        self.is_initialized = True
        logger.debug("LangGraph workflow built and compiled")

    async def _agent_decision_node(self, state: RaceState) -> Dict:
        vision = state["vision"]
        strategy = state["strategy"]
        history = state.get("history", [])

        if self.use_llm and self.llm is not None:
            action, reasoning = await self._make_llm_decision(vision, strategy, history)
        else:
            action, reasoning = self._make_rule_based_decision(vision), "rule-based"

        return {"last_result": {"node": "agent_decision", "action": action, "reasoning": reasoning}}

    def _make_rule_based_decision(self, vision: MouseVision) -> MouseAction:
        """
        Head for the exit when it is one step away, otherwise follow the
        right-hand wall: right, then ahead, then left, then turn around.
        """
        for relative, turn in (("front", None), ("right", Turn.RIGHT), ("left", Turn.LEFT)):
            if getattr(vision, relative) is CellView.EXIT:
                return MouseAction(turn=turn, move=True)

        if not vision.is_blocked("right"):
            return MouseAction(turn=Turn.RIGHT, move=True)
        if not vision.is_blocked("front"):
            return MouseAction(move=True)
        if not vision.is_blocked("left"):
            return MouseAction(turn=Turn.LEFT, move=True)
        return MouseAction(turn=Turn.RIGHT)

    async def _make_llm_decision(self, vision: MouseVision, strategy: str,
                                 history: List[str]) -> Tuple[Optional[MouseAction], str]:
        prompt = f"{SYSTEM_PROMPT}\n\n{build_user_prompt(strategy, vision, history)}"
        logger.debug(f"LLM Prompt:\n{prompt}")

        time_start = time.time()
        response = await self.llm.ainvoke(prompt)
        llm_time = round(time.time() - time_start, 2)

        metadata = getattr(response, 'response_metadata', None) or {}
        usage = metadata.get('token_usage') or {}
        logger.debug(f"LLM call took {llm_time}s, tokens={usage.get('total_tokens')}")

        llm_output = response.content if hasattr(response, 'content') else str(response)
        logger.debug(f"LLM Response:\n{llm_output}")
        return self._parse_llm_response(llm_output), llm_output

    def _parse_llm_response(self, llm_output: str) -> Optional[MouseAction]:
        """
        Extract `Turn:` and `Move:` lines from the model output.

        Returns None when neither line is present or the decision does nothing.
        """
        turn_match = TURN_RE.search(llm_output or "")
        move_match = MOVE_RE.search(llm_output or "")
        if not turn_match and not move_match:
            logger.warning(f"Could not parse an action from LLM output: {(llm_output or '')[:100]}...")
            return None

        turn = None
        if turn_match and turn_match.group(1).lower() != 'none':
            turn = Turn[turn_match.group(1).upper()]
        move = bool(move_match) and move_match.group(1).lower() in ('yes', 'true')

        if turn is None and not move:
            return None
        return MouseAction(turn=turn, move=move)

    async def get_action(self, strategy: str, vision: MouseVision) -> ActionResult:
        """Decide one mouse's action; any failure yields the default action."""
        self._initialize_workflow()
        state: RaceState = {
            "vision": vision,
            "strategy": strategy,
            "history": format_history(vision.action_history),
            "last_result": None,
        }
        try:
            workflow_result = await self.graph_app.ainvoke(state)
            last_result = workflow_result.get("last_result") or {}
            action = last_result.get("action")
            reasoning = last_result.get("reasoning", "")
        except Exception as e:
            logger.warning(f"decision failed ({type(e).__name__}: {e}), falling back to default action")
            action, reasoning = None, f"{type(e).__name__}: {e}"

        if not isinstance(action, MouseAction):
            return ActionResult(action=default_action(vision), reasoning=reasoning, fallback=True)
        return ActionResult(action=action, reasoning=reasoning)

    async def get_actions(self, strategy_a: str, vision_a: MouseVision,
                          strategy_b: str, vision_b: MouseVision) -> ActionsResult:
        """Both decisions are requested concurrently from the same pre-turn state."""
        result_a, result_b = await asyncio.gather(
            self.get_action(strategy_a, vision_a),
            self.get_action(strategy_b, vision_b),
        )
        return ActionsResult(actions=(result_a.action, result_b.action), results=(result_a, result_b))
