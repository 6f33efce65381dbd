#!/usr/bin/env python3
"""
Guess The Player — identify a CPBL player from their percentile ranks.

A random qualified player for the target season is looked up through a
web-search-grounded completion service (see player_data.py). You see their
Rebas.tw-style percentile chart and get five guesses. Clues unlock as you
miss: the team after the first wrong guess, the advanced chart (spray chart
for batters, pitch velocity distribution for pitchers) after the third.
Any wrong guess can be compared against the answer, stat by stat.

Setup:
  1. pip install -e .
  2. Put OPENAI_API_KEY=... in a .env file (or the environment)
  3. python game.py              # terminal game
     python web_game.py          # browser game on http://localhost:5050

Usage:
  python game.py
  python game.py --output-dir ./output --season 2025
"""

import argparse
import os
import sys
import textwrap
import threading
import uuid
from dataclasses import dataclass, replace
from enum import Enum

import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.patches import Arc, Patch, Polygon
from dotenv import load_dotenv
from loguru import logger

from player_data import (
    ConfigurationError, LookupFailure, PlayerDataError,
    fetch_random_player, fetch_specific_player,
)


MAX_ATTEMPTS = 5
REVEAL_CODE = "解答"

CLUE_TEAM = "team"
CLUE_ADVANCED = "advanced"
ALL_CLUES = frozenset({CLUE_TEAM, CLUE_ADVANCED})

# Unlocked once this many wrong guesses have been made
CLUE_THRESHOLDS = {CLUE_TEAM: 1, CLUE_ADVANCED: 3}

FETCH_ERROR_MESSAGE = "無法從 野球革命 獲取數據。請檢查網路或稍後再試。"
CONFIG_ERROR_MESSAGE = "缺少 API 金鑰，無法獲取數據。"
COMPARE_FAILED_MESSAGE = "驗證失敗"

# Used for autocomplete suggestions in the UI only; the answer can be anyone.
SUGGESTED_PLAYERS = [
    "古林睿煬", "徐若熙", "江坤宇", "吉力吉撈·鞏冠",
    "陳傑憲", "林立", "陳俊秀", "王威晨", "魔鷹",
    "勝騎士", "威能帝", "銳歐", "曾峻岳", "李凱威",
    "岳東華", "申皓瑋", "劉基鴻", "王山雅", "陳柏豪",
]


# ─── Session State ──────────────────────────────────────────────────────────

class Status(Enum):
    LOADING = "loading"
    PLAYING = "playing"
    WON = "won"
    LOST = "lost"
    ERROR = "error"


@dataclass(frozen=True)
class Guess:
    display_name: str
    is_correct: bool
    comparison_data: object = None
    comparison_error: str = None
    is_loading: bool = False


@dataclass(frozen=True)
class Session:
    round_id: str
    secret_record: object = None
    guesses: tuple = ()
    clues_unlocked: frozenset = frozenset()
    status: Status = Status.LOADING
    error_message: str = None

    @property
    def attempts_left(self):
        return max(MAX_ATTEMPTS - len(self.guesses), 0)


def normalize_name(name):
    """Drop all whitespace so '陳 傑憲' matches '陳傑憲'."""
    return "".join(name.split())


def new_session():
    """A fresh round waiting for its secret player."""
    return Session(round_id=uuid.uuid4().hex)


def session_loaded(session, record):
    return replace(session, secret_record=record, status=Status.PLAYING, error_message=None)


def session_failed(session, message):
    return replace(session, status=Status.ERROR, error_message=message)


def submit_guess(session, text):
    """Apply one guess and return the new session.

    The session comes back unchanged when there is nothing to guess at
    (no player loaded, round over) or the input is blank.
    """
    if session.secret_record is None or session.status is not Status.PLAYING:
        return session
    raw = (text or "").strip()
    if not raw:
        return session

    if raw == REVEAL_CODE:
        return replace(session, status=Status.LOST, clues_unlocked=ALL_CLUES)

    if normalize_name(raw) == normalize_name(session.secret_record.name):
        guesses = session.guesses + (Guess(display_name=raw, is_correct=True),)
        return replace(session, guesses=guesses, status=Status.WON, clues_unlocked=ALL_CLUES)

    guesses = session.guesses + (Guess(display_name=raw, is_correct=False),)
    if len(guesses) >= MAX_ATTEMPTS:
        return replace(session, guesses=guesses, status=Status.LOST, clues_unlocked=ALL_CLUES)

    unlocked = set(session.clues_unlocked)
    for clue, threshold in CLUE_THRESHOLDS.items():
        if len(guesses) >= threshold:
            unlocked.add(clue)
    return replace(session, guesses=guesses, clues_unlocked=frozenset(unlocked))


def _replace_guess(session, index, guess):
    guesses = session.guesses[:index] + (guess,) + session.guesses[index + 1:]
    return replace(session, guesses=guesses)


def begin_comparison(session, index):
    """Mark a wrong guess as loading. Returns (session, started)."""
    if not 0 <= index < len(session.guesses):
        return session, False
    guess = session.guesses[index]
    if (guess.is_correct or guess.comparison_data is not None
            or guess.comparison_error or guess.is_loading):
        return session, False
    return _replace_guess(session, index, replace(guess, is_loading=True)), True


def finish_comparison(session, round_id, index, result):
    """Store a comparison result, or drop it if its round is gone."""
    if session.round_id != round_id or not 0 <= index < len(session.guesses):
        return session
    guess = session.guesses[index]
    if not guess.is_loading:
        return session
    if isinstance(result, LookupFailure):
        guess = replace(guess, is_loading=False, comparison_error=result.message)
    else:
        guess = replace(guess, is_loading=False, comparison_data=result)
    return _replace_guess(session, index, guess)


class GameController:
    """Owns the current round and runs the fetches that drive it.

    Every change is a whole-session replacement under the lock. The lock is
    never held across a network call.
    """

    def __init__(self, fetch_random=fetch_random_player, fetch_specific=fetch_specific_player):
        self._fetch_random = fetch_random
        self._fetch_specific = fetch_specific
        self._lock = threading.Lock()
        self._session = new_session()

    @property
    def session(self):
        with self._lock:
            return self._session

    def _apply(self, round_id, transition):
        with self._lock:
            if self._session.round_id != round_id:
                logger.info(f"Discarding result for stale round {round_id}")
                return self._session
            self._session = transition(self._session)
            return self._session

    def new_game(self):
        session = new_session()
        with self._lock:
            self._session = session
        logger.info(f"Starting round {session.round_id}")

        try:
            record = self._fetch_random()
        except ConfigurationError as exc:
            logger.error(f"Cannot fetch player data: {exc}")
            return self._apply(session.round_id, lambda s: session_failed(s, CONFIG_ERROR_MESSAGE))
        except PlayerDataError as exc:
            logger.error(f"Random player fetch failed: {exc}")
            return self._apply(session.round_id, lambda s: session_failed(s, FETCH_ERROR_MESSAGE))
        except Exception:
            logger.exception("Random player fetch failed")
            return self._apply(session.round_id, lambda s: session_failed(s, FETCH_ERROR_MESSAGE))

        return self._apply(session.round_id, lambda s: session_loaded(s, record))

    def submit(self, text):
        with self._lock:
            before = self._session
            self._session = submit_guess(before, text)
            after = self._session
        if after.status is not before.status:
            logger.info(f"Round {after.round_id} is now {after.status.value}")
        return after

    def compare(self, index):
        with self._lock:
            session, started = begin_comparison(self._session, index)
            self._session = session
        if not started:
            return session

        guess = session.guesses[index]
        try:
            result = self._fetch_specific(guess.display_name, session.secret_record.year)
        except Exception:
            logger.exception(f"Comparison fetch failed for {guess.display_name!r}")
            result = LookupFailure(COMPARE_FAILED_MESSAGE, "SYSTEM_ERROR")

        return self._apply(
            session.round_id,
            lambda s: finish_comparison(s, session.round_id, index, result),
        )


# ─── Comparison Table ───────────────────────────────────────────────────────

COMPARISON_COLUMNS = ["label", "secret_value", "secret_pr", "guess_value", "guess_pr", "pr_diff"]


def comparison_table(secret_stats, other_stats):
    """Line up a guessed player's stats against the answer's, in the answer's order."""
    secret = pd.DataFrame(
        [{"key": s.label.lower(), "label": s.label,
          "secret_value": s.value, "secret_pr": s.percentile_rank} for s in secret_stats],
        columns=["key", "label", "secret_value", "secret_pr"],
    )
    other = pd.DataFrame(
        [{"key": s.label.lower(), "guess_value": s.value,
          "guess_pr": s.percentile_rank} for s in other_stats],
        columns=["key", "guess_value", "guess_pr"],
    ).drop_duplicates(subset="key")

    table = secret.merge(other, on="key", how="left")
    table["pr_diff"] = table["guess_pr"] - table["secret_pr"]
    return table[COMPARISON_COLUMNS]


def comparison_rows(table):
    """Table rows as plain dicts, missing values as None."""
    rows = table.astype(object).where(table.notna(), None)
    return rows.to_dict("records")


# ─── Image Rendering ────────────────────────────────────────────────────────

# Rebas.tw-ish palette
RB_BLUE      = "#1d3f73"
RB_GOLD      = "#d4a017"
RB_GREY      = "#8c8c8c"
RB_TRACK     = "#ececec"
RB_BG        = "#ffffff"
RB_FIELD     = "#e9f2e3"
RB_DIRT      = "#d9b38c"
RB_TEXT      = "#1a1a1a"

BATTED_BALL_COLORS = {
    "1B": "#2b8cbe",
    "2B": "#41ab5d",
    "3B": "#fd8d3c",
    "HR": "#c0392b",
    "FO": RB_GREY,
}


def fmt_stat_value(val):
    """Format a stat value for display."""
    if isinstance(val, float):
        return f"{val:.3f}".rstrip("0").rstrip(".") if val else "0"
    return str(val)


def _save(fig, output_path):
    fig.tight_layout(pad=0.4)
    fig.savefig(output_path, dpi=150, bbox_inches="tight",
                facecolor=fig.get_facecolor(), edgecolor="none")
    plt.close(fig)


def _empty_chart(output_path, message):
    fig, ax = plt.subplots(1, 1, figsize=(6.5, 1.5), dpi=150)
    fig.patch.set_facecolor(RB_BG)
    ax.axis("off")
    ax.text(0.5, 0.5, message, ha="center", va="center", fontsize=11, color=RB_GREY)
    _save(fig, output_path)


def render_pr_chart(stats, output_path, player_type="batter", title=None, compare_stats=None):
    """Render percentile-rank bars, optionally paired with a guessed player's."""
    if not stats:
        _empty_chart(output_path, "No stats available")
        return

    heading = title or ("Pitching PR" if player_type == "pitcher" else "Batting PR")
    n = len(stats)
    fig, ax = plt.subplots(1, 1, figsize=(6.5, 0.45 * n + 0.9), dpi=150)
    fig.patch.set_facecolor(RB_BG)
    ax.set_facecolor(RB_BG)
    ax.set_xlim(0, 112)
    ax.set_ylim(n - 0.5, -0.5)
    ax.set_yticks(range(n))
    ax.set_yticklabels([s.label for s in stats], fontsize=9, color=RB_TEXT)
    ax.set_xticks([])
    for side in ("top", "right", "bottom", "left"):
        ax.spines[side].set_visible(False)
    ax.set_title(heading, loc="left", fontsize=12, fontweight="bold", color=RB_TEXT)

    for tick in (20, 40, 60, 80):
        ax.axvline(tick, color="white", linewidth=0.8, zorder=3)

    if compare_stats is None:
        for idx, stat in enumerate(stats):
            rank = stat.percentile_rank
            width = max(rank, 5)  # keep tiny ranks visible
            ax.barh(idx, 100, height=0.7, color=RB_TRACK, zorder=1)
            ax.barh(idx, width, height=0.7, color=RB_GOLD, zorder=2)
            ax.text(width - 1.5, idx, str(rank), ha="right", va="center",
                    fontsize=8, fontweight="bold", color="white", zorder=4)
            ax.text(102, idx, fmt_stat_value(stat.value), ha="left", va="center",
                    fontsize=8, color=RB_TEXT)
    else:
        table = comparison_table(stats, compare_stats)
        for idx, row in table.iterrows():
            ax.barh(idx, 100, height=0.8, color=RB_TRACK, zorder=1)
            ax.barh(idx - 0.2, max(row["secret_pr"], 5), height=0.38, color=RB_GOLD, zorder=2)
            if pd.notna(row["guess_pr"]):
                ax.barh(idx + 0.2, max(row["guess_pr"], 5), height=0.38, color=RB_BLUE, zorder=2)
                ax.text(102, idx, f"{row['pr_diff']:+.0f}", ha="left", va="center",
                        fontsize=8, color=RB_TEXT)
            else:
                ax.text(102, idx, "n/a", ha="left", va="center", fontsize=8, color=RB_GREY)
        ax.legend(handles=[Patch(color=RB_GOLD, label="Answer"), Patch(color=RB_BLUE, label="Guess")],
                  loc="lower right", fontsize=7, frameon=False)

    _save(fig, output_path)


def render_spray_chart(points, output_path):
    """Render batted balls on a field diagram (x: -100..100, y: 0..120)."""
    fig, ax = plt.subplots(1, 1, figsize=(5.5, 5), dpi=150)
    fig.patch.set_facecolor(RB_BG)
    ax.set_xlim(-125, 125)
    ax.set_ylim(-10, 135)
    ax.set_aspect("equal")
    ax.axis("off")
    ax.set_title("Spray Chart", loc="left", fontsize=12, fontweight="bold", color=RB_TEXT)

    fair = Polygon([(0, 0), (-88, 88), (88, 88)], closed=True, facecolor=RB_FIELD, edgecolor="none")
    ax.add_patch(fair)
    ax.add_patch(Arc((0, 0), 250, 250, theta1=45, theta2=135, color=RB_GREY, linewidth=1.2))
    ax.plot([0, -88], [0, 88], color=RB_GREY, linewidth=1)
    ax.plot([0, 88], [0, 88], color=RB_GREY, linewidth=1)
    diamond = Polygon([(0, 0), (-19, 19), (0, 38), (19, 19)], closed=True,
                      facecolor=RB_DIRT, edgecolor="white", linewidth=1)
    ax.add_patch(diamond)

    if not points:
        ax.text(0, 60, "No batted-ball data", ha="center", va="center", fontsize=10, color=RB_GREY)
    for result, color in BATTED_BALL_COLORS.items():
        xs = [p.x for p in points if p.result == result]
        ys = [p.y for p in points if p.result == result]
        if xs:
            ax.scatter(xs, ys, s=28, color=color, edgecolor="white", linewidth=0.5,
                       label=result, zorder=3)
    if points:
        ax.legend(loc="upper right", fontsize=7, frameon=False)

    _save(fig, output_path)


def render_pitch_distribution(distributions, output_path):
    """Render per-pitch velocity histograms with their mean marked."""
    if not distributions:
        _empty_chart(output_path, "No pitch data available")
        return

    fig, ax = plt.subplots(1, 1, figsize=(6.5, 3.5), dpi=150)
    fig.patch.set_facecolor(RB_BG)
    ax.set_title("Pitch Velocity (km/h)", loc="left", fontsize=12, fontweight="bold", color=RB_TEXT)
    colors = plt.get_cmap("tab10")

    for idx, pitch in enumerate(distributions):
        color = colors(idx % 10)
        bins = sorted(pitch.data)
        if bins:
            speeds = [s for s, _ in bins]
            counts = [c for _, c in bins]
            ax.plot(speeds, counts, color=color, linewidth=1.5, label=pitch.pitch_type)
            ax.fill_between(speeds, counts, color=color, alpha=0.2)
        ax.axvline(pitch.mean, color=color, linestyle="--", linewidth=0.8)

    ax.set_xlabel("Speed", fontsize=8)
    ax.set_ylabel("Count", fontsize=8)
    ax.tick_params(labelsize=7)
    for side in ("top", "right"):
        ax.spines[side].set_visible(False)
    ax.legend(fontsize=7, frameon=False)

    _save(fig, output_path)


def render_advanced_chart(record, output_path):
    """Spray chart for batters, pitch distribution for pitchers."""
    if record.type == "batter":
        render_spray_chart(record.spray_chart, output_path)
    else:
        render_pitch_distribution(record.pitch_distribution, output_path)


# ─── Terminal Game ──────────────────────────────────────────────────────────

def format_stats(stats):
    """Plain-text percentile bars for the terminal."""
    lines = []
    for stat in stats:
        bar = "█" * (stat.percentile_rank // 5)
        lines.append(f"  {stat.label:>7}  {fmt_stat_value(stat.value):>7}  {bar:<20} {stat.percentile_rank:>2}")
    return "\n".join(lines)


def format_comparison(table):
    lines = []
    for row in comparison_rows(table):
        guess_pr = "--" if row["guess_pr"] is None else f"{row['guess_pr']:.0f}"
        diff = "" if row["pr_diff"] is None else f"({row['pr_diff']:+.0f})"
        lines.append(f"  {row['label']:>7}  answer {row['secret_pr']:>2}  guess {guess_pr:>2} {diff}")
    return "\n".join(lines)


def _print_round(session, output_dir):
    record = session.secret_record
    print(f"\n{'─' * 60}")
    print(f"  {record.year} {'Pitcher' if record.type == 'pitcher' else 'Batter'}"
          f"  |  Attempts left: {session.attempts_left}")
    print(f"{'─' * 60}")
    print(format_stats(record.stats))
    if output_dir:
        img_path = os.path.join(output_dir, "current_player.png")
        render_pr_chart(record.stats, img_path, player_type=record.type)
        print(f"\n  Chart saved to: {img_path}")


def _print_clues(session, shown, output_dir):
    record = session.secret_record
    if CLUE_TEAM in session.clues_unlocked and CLUE_TEAM not in shown:
        print(f"  💡 Clue 1: Team — {record.team}")
        shown.add(CLUE_TEAM)
    if CLUE_ADVANCED in session.clues_unlocked and CLUE_ADVANCED not in shown:
        if output_dir:
            img_path = os.path.join(output_dir, "advanced_clue.png")
            render_advanced_chart(record, img_path)
            print(f"  💡 Clue 2: Advanced chart saved to: {img_path}")
        else:
            print("  💡 Clue 2: Advanced chart unlocked (use --output-dir to save it)")
        shown.add(CLUE_ADVANCED)


def play_game(controller=None, output_dir=None):
    """Main game loop."""
    print("\n" + "=" * 60)
    print("  ⚾  GUESS THE PLAYER  ⚾")
    print("=" * 60)

    if controller is None:
        controller = GameController()
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    while True:
        print("\n  Searching Rebas.tw for a random player...")
        session = controller.new_game()
        if session.status is Status.ERROR:
            print(f"  ❌ {session.error_message}")
            again = input("  Retry? [y/N]: ").strip().lower()
            if again != "y":
                return
            continue

        _print_round(session, output_dir)
        shown = set()

        while session.status is Status.PLAYING:
            user_input = input("\n  Your guess (or 'compare N' / 'new' / 'quit'): ").strip()

            if user_input.lower() == "quit":
                return
            if user_input.lower() == "new":
                break
            if user_input.lower().startswith("compare"):
                parts = user_input.split()
                if len(parts) != 2 or not parts[1].isdigit():
                    print("  Usage: compare N")
                    continue
                index = int(parts[1]) - 1
                print("  Searching...")
                session = controller.compare(index)
                if 0 <= index < len(session.guesses):
                    guess = session.guesses[index]
                    if guess.comparison_error:
                        print(f"  ⚠️  {guess.comparison_error}")
                    elif guess.comparison_data is not None:
                        table = comparison_table(session.secret_record.stats, guess.comparison_data.stats)
                        print(format_comparison(table))
                continue

            session = controller.submit(user_input)
            if session.status is Status.PLAYING and session.guesses:
                last = session.guesses[-1]
                print(f"  ❌ Not {last.display_name}. {session.attempts_left} left.")
                _print_clues(session, shown, output_dir)

        if session.status in (Status.WON, Status.LOST):
            record = session.secret_record
            if session.status is Status.WON:
                print(f"\n  ✅ Correct! It's {record.name} ({record.team})!")
            else:
                print(f"\n  Game over. The answer was: {record.name} ({record.team})")
            for url in record.source_urls:
                print(f"  Source: {url}")
            again = input("\n  Play again? [Y/n]: ").strip().lower()
            if again == "n":
                return


# ─── CLI ─────────────────────────────────────────────────────────────────────

def configure_logging():
    logger.remove()
    logger.add(sys.stderr, level=os.getenv("LOG_LEVEL", "INFO"))


def main():
    parser = argparse.ArgumentParser(
        description="Guess The Player — guess CPBL players from their percentile ranks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python game.py
              python game.py --output-dir ./output
              python game.py --season 2025 --env-file .env.local
        """),
    )
    parser.add_argument("--output-dir", type=str, default=None,
                        help="Directory for chart images (default: no images)")
    parser.add_argument("--season", type=str, default=None,
                        help="Season to play (default: TARGET_SEASON or 2025)")
    parser.add_argument("--env-file", default=".env", help="Path to .env file")

    args = parser.parse_args()

    load_dotenv(args.env_file, override=False)
    if args.season:
        os.environ["TARGET_SEASON"] = args.season
    configure_logging()

    try:
        play_game(output_dir=args.output_dir)
    except (KeyboardInterrupt, EOFError):
        print("\n  Goodbye!")


if __name__ == "__main__":
    main()
