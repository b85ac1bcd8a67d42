"""Streamlit front end: two strategies, one maze, a live race."""

import asyncio
import uuid

import streamlit as st
import matplotlib.pyplot as plt
from matplotlib.patches import Circle
import numpy as np
from dotenv import load_dotenv

from aarace_config import MODEL, RaceSettings, validate_player_name, validate_strategy
from aarace_game import GameStatus, RaceGame, create_maze_preview
from aarace_loop import MatchRunner, PlayerConfig
from aagentic_race import AAgenticRacer

MAZE_SIZE = 15
__version__ = '20261019_1241'


def _secret(name, default=None):
    try:
        return st.secrets.get(name) or default
    except Exception:
        # no secrets.toml configured
        return default


def main():
    load_dotenv()
    st.set_page_config(layout="wide")
    st.title("The AA Maze Race")

    if 'app_version' not in st.session_state:
        st.session_state.app_version = __version__

    if 'llm_model' not in st.session_state:
        st.session_state.llm_model = _secret("LLM_MODEL", MODEL)

    if 'maze_size' not in st.session_state:
        st.session_state.maze_size = int(_secret("MAZE_SIZE", MAZE_SIZE))

    if 'preview' not in st.session_state:
        st.session_state.preview = create_maze_preview(st.session_state.maze_size)

    left_col, right_col = st.columns([5, 3])

    with left_col:
        name_a = st.text_input("Mouse A", value="Mouse A", max_chars=20)
        strategy_a = st.text_area("Strategy A", height=120, max_chars=500,
                                  placeholder="Enter a strategy using natural language")
        name_b = st.text_input("Mouse B", value="Mouse B", max_chars=20)
        strategy_b = st.text_area("Strategy B", height=120, max_chars=500,
                                  placeholder="Enter a strategy using natural language")

        maze_size = st.slider("Maze size", min_value=7, max_value=51, step=2, value=st.session_state.maze_size)
        if st.button("New maze") or maze_size != st.session_state.maze_size:
            st.session_state.maze_size = maze_size
            st.session_state.preview = create_maze_preview(maze_size)

        start = st.button("Start Race")
        status_box = st.empty()
        reasoning_box = st.empty()

    with right_col:
        maze_placeholder = st.empty()
        preview = st.session_state.preview
        fig = render_payload_matplotlib(preview.maze.prepare_render())
        maze_placeholder.pyplot(fig)
        plt.close(fig)

    if start:
        try:
            settings = RaceSettings(maze_size=st.session_state.maze_size, model=st.session_state.llm_model,
                                    api_key=_secret("OPENAI_API_KEY"))
            player_a = PlayerConfig(validate_player_name(name_a), validate_strategy(strategy_a))
            player_b = PlayerConfig(validate_player_name(name_b), validate_strategy(strategy_b))
        except ValueError as e:
            st.error(str(e))
            return

        runner = MatchRunner(
            uuid.uuid4().hex[:8], player_a, player_b,
            action_provider=AAgenticRacer(model=settings.model, api_key=settings.api_key),
            max_turns=settings.max_turns,
            game=RaceGame.create(preview=preview, max_turns=settings.max_turns),
        )

        def on_event(event, snapshot, *rest):
            game = RaceGame.from_dict(snapshot)
            fig = render_payload_matplotlib(game.maze.prepare_render(mice=game.mice))
            maze_placeholder.pyplot(fig)
            plt.close(fig)
            status_box.markdown(f"**Turn** {game.turn}/{game.max_turns}, **status** {game.status.name}")
            if event == "turn":
                info = rest[1]
                reasoning_box.markdown("\n\n".join(
                    f"**{m.name}:** {info.actions[i].describe()}\n\n{info.results[i].reasoning}"
                    for i, m in enumerate(game.mice)))

        runner.subscribe(on_event)
        game = asyncio.run(runner.run())

        if runner.error is not None:
            st.error(f"Race aborted: {runner.error}")
        elif game.winner is not None:
            st.success(f"{game.winner.name} wins after {game.turn} turns!")
        elif game.status is GameStatus.DRAW:
            st.info(f"Draw after {game.turn} turns")

    st.divider()

    with st.expander('monsters hide here'):
        st.write({k: str(v) for k, v in st.session_state.items()})


def render_payload_matplotlib(payload):
    def _as_tuples(points):
        return [tuple(p) for p in points]

    rows = payload["extent"]["rows"]
    cols = payload["extent"]["cols"]
    arr = np.array(payload["background"]["array"])

    fig, ax = plt.subplots(1, 1, figsize=(8, 8))
    ax.imshow(arr, cmap="gray_r", interpolation="nearest")

    # no edgecolor, no linewidth
    def dot(c, r, rad, fc, alpha=1, z=3, txt=None, fs=12):
        ax.add_patch(Circle((c, r), rad, facecolor=fc, edgecolor="none", linewidth=0, alpha=alpha, zorder=z))
        if txt:
            ax.text(c, r, txt, ha="center", va="center", color="black", weight="bold", zorder=z + 1, fontsize=fs)

    for mouse in payload.get("mice", []):
        explored = mouse["explored"]
        for r, c in _as_tuples(explored["points"]):
            dot(c, r, explored["radius"], explored["facecolor"], alpha=explored.get("alpha", 0.5), z=3)

    sr, sc = payload["start"]["rc"]
    dot(sc, sr, payload["start"]["radius"], payload["start"]["facecolor"], z=5)
    gr, gc = payload["goal"]["rc"]
    dot(gc, gr, payload["goal"]["radius"], payload["goal"]["facecolor"], z=6)

    for i, mouse in enumerate(payload.get("mice", [])):
        mr, mc = mouse["rc"]
        dot(mc, mr, mouse["radius"], mouse["facecolor"], z=7 + i, txt=mouse["label"]["text"], fs=8)

    ax.set_xlim(-0.5, cols - 0.5)
    ax.set_ylim(rows - 0.5, -0.5)
    ax.set_xticks([])
    ax.set_yticks([])
    ax.set_aspect("equal")
    for sp in ax.spines.values():
        sp.set_visible(False)
    ax.set_title(payload.get("styles", {}).get("title", ""))
    plt.tight_layout()
    return fig


if __name__ == "__main__":
    main()
