"""Smoke tests for the chart renderers and terminal formatting."""

import pytest

from game import (
    fmt_stat_value,
    format_comparison,
    format_stats,
    comparison_table,
    render_advanced_chart,
    render_pitch_distribution,
    render_pr_chart,
    render_spray_chart,
)
from helpers import make_record
from player_data import BattedBall, PitchDistribution, StatItem


def _assert_png(path):
    assert path.exists()
    assert path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"


class TestRenderPrChart:
    def test_single_player(self, tmp_path, pitcher) -> None:
        out = tmp_path / "pr.png"

        render_pr_chart(pitcher.stats, str(out), player_type="pitcher")

        _assert_png(out)

    def test_comparison(self, tmp_path, batter) -> None:
        out = tmp_path / "compare.png"
        other = [StatItem("AVG", ".250", 30), StatItem("wOBA", ".300", 40)]

        render_pr_chart(batter.stats, str(out), title="Comparison PR", compare_stats=other)

        _assert_png(out)

    def test_no_stats(self, tmp_path) -> None:
        out = tmp_path / "empty.png"

        render_pr_chart((), str(out))

        _assert_png(out)


class TestAdvancedCharts:
    def test_spray_chart(self, tmp_path) -> None:
        out = tmp_path / "spray.png"
        points = (BattedBall(-40, 90, "HR"), BattedBall(10, 30, "1B"), BattedBall(60, 70, "FO"))

        render_spray_chart(points, str(out))

        _assert_png(out)

    def test_empty_spray_chart(self, tmp_path) -> None:
        out = tmp_path / "spray.png"

        render_spray_chart((), str(out))

        _assert_png(out)

    def test_pitch_distribution(self, tmp_path) -> None:
        out = tmp_path / "pitches.png"
        pitches = (
            PitchDistribution("Four-seam", 148.5, ((146, 4), (148, 9), (150, 6))),
            PitchDistribution("Splitter", 134.0, ()),
        )

        render_pitch_distribution(pitches, str(out))

        _assert_png(out)

    @pytest.mark.parametrize("player_type", ["batter", "pitcher"])
    def test_advanced_chart_picks_by_type(self, tmp_path, player_type) -> None:
        out = tmp_path / f"{player_type}.png"

        render_advanced_chart(make_record(player_type=player_type), str(out))

        _assert_png(out)


class TestTextFormatting:
    @pytest.mark.parametrize("value,expected", [
        (".302", ".302"),
        (145, "145"),
        (0.25, "0.25"),
        (0.0, "0"),
    ])
    def test_fmt_stat_value(self, value, expected) -> None:
        assert fmt_stat_value(value) == expected

    def test_format_stats_lists_every_label(self, pitcher) -> None:
        text = format_stats(pitcher.stats)

        assert len(text.splitlines()) == len(pitcher.stats)
        assert "ERA" in text and "91" in text

    def test_format_comparison_marks_missing(self) -> None:
        table = comparison_table([StatItem("ERA", "2.10", 90), StatItem("GB%", "50%", 70)],
                                 [StatItem("ERA", "3.00", 60)])

        lines = format_comparison(table).splitlines()

        assert "(-30)" in lines[0]
        assert "--" in lines[1]
