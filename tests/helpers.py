"""Fakes and record builders shared by the test modules."""

import json

from player_data import Completion, PlayerRecord, StatItem


PITCHER_STATS = [
    ("ERA", "2.31", 91), ("FIP", "2.85", 84), ("AVG", ".221", 77),
    ("BABIP", ".276", 60), ("LOB%", "78.2%", 81), ("Whiff%", "27.9%", 88),
    ("K%", "24.6%", 86), ("BB%", "6.1%", 70), ("GB%", "48.3%", 65),
]

BATTER_STATS = [
    ("wOBA", ".402", 97), ("AVG", ".331", 95), ("SLG", ".488", 90),
    ("OBP", ".410", 96), ("OPS", ".898", 94), ("ISO", ".157", 72),
    ("BABIP", ".352", 88), ("Whiff%", "14.2%", 80), ("K%", "11.5%", 85),
    ("BB%", "11.9%", 89),
]

class FakeClient:
    """Stands in for ProviderClient; records prompts, returns canned text."""

    def __init__(self, text="", source_urls=None, error=None):
        self.text = text
        self.source_urls = source_urls or []
        self.error = error
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return Completion(text=self.text, source_urls=list(self.source_urls))

class FirstChoice:
    """rng stand-in that always picks the first option."""

    def choice(self, seq):
        return seq[0]

def make_record(name="陳傑憲", team="統一7-ELEVEn獅", player_type="batter", year="2025", stats=None):
    if stats is None:
        stats = BATTER_STATS if player_type == "batter" else PITCHER_STATS
    return PlayerRecord(
        name=name,
        team=team,
        type=player_type,
        year=year,
        stats=tuple(StatItem(label, value, pr) for label, value, pr in stats),
    )

def payload(name="陳傑憲", team="統一7-ELEVEn獅", player_type="batter", stats=None, **extra):
    """Provider-shaped JSON for a player."""
    if stats is None:
        stats = BATTER_STATS if player_type == "batter" else PITCHER_STATS
    data = {
        "name": name,
        "team": team,
        "type": player_type,
        "year": "2025",
        "stats": [{"label": label, "value": value, "pr": pr} for label, value, pr in stats],
    }
    data.update(extra)
    return json.dumps(data, ensure_ascii=False)
