"""
Player data for Guess The Player.

Looks up CPBL players through a web-search-grounded completion service
(the OpenAI Responses API with the web search tool), pulls the JSON payload
out of whatever free text comes back, and turns it into PlayerRecord values
with their stats in Rebas.tw display order.

Configuration (read from the environment, a .env file is loaded by the
entry points):
  OPENAI_API_KEY   required
  OPENAI_MODEL     default gpt-4.1-mini
  TARGET_SEASON    default 2025
"""

import json
import os
import random
import re
import textwrap
from dataclasses import dataclass, field, replace

from loguru import logger
from openai import OpenAI, OpenAIError


DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_SEASON = "2025"

CPBL_TEAMS = [
    "中信兄弟",
    "統一7-ELEVEn獅",
    "樂天桃猿",
    "富邦悍將",
    "味全龍",
    "台鋼雄鷹",
]

PLAYER_TYPES = ("batter", "pitcher")

# Rebas.tw display order
PITCHER_STAT_ORDER = [
    "ERA", "FIP", "AVG", "BABIP", "LOB%", "Whiff%", "K%", "BB%", "GB%",
]

BATTER_STAT_ORDER = [
    "wOBA", "AVG", "SLG", "OBP", "OPS", "ISO", "BABIP", "Whiff%", "K%", "BB%",
]

BATTED_BALL_RESULTS = ("1B", "2B", "3B", "HR", "FO")

LOOKUP_ERROR_MESSAGES = {
    "NOT_FOUND": "無此球員",
    "NO_DATA": "該球員無{year}一軍資料",
    "NOT_QUALIFIED": "該球員{year}不符合資格",
}
UNKNOWN_LOOKUP_MESSAGE = "無法獲取球員資料"
PARSE_FAILURE_MESSAGE = "解析資料失敗"
SYSTEM_FAILURE_MESSAGE = "系統發生錯誤，請稍後再試"


def target_season():
    """Season every lookup is pinned to."""
    return os.getenv("TARGET_SEASON", DEFAULT_SEASON)


# ─── Errors ─────────────────────────────────────────────────────────────────

class PlayerDataError(Exception):
    """Base class for everything that can go wrong fetching player data."""


class ConfigurationError(PlayerDataError):
    """The provider credential is missing."""


class ProviderError(PlayerDataError):
    """The completion service or the network failed."""


class JsonExtractionFailed(ProviderError):
    """No JSON object could be recovered from a completion."""

    def __init__(self, text):
        super().__init__("Could not extract valid JSON from response")
        self.text = text


class IncompleteData(ProviderError):
    """The completion parsed, but the record is missing required fields."""


# ─── Data Model ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StatItem:
    label: str
    value: object
    percentile_rank: int


@dataclass(frozen=True)
class BattedBall:
    x: float
    y: float
    result: str


@dataclass(frozen=True)
class PitchDistribution:
    pitch_type: str
    mean: float
    data: tuple = ()  # (speed, count) pairs


@dataclass(frozen=True)
class PlayerRecord:
    name: str
    team: str
    type: str
    year: str
    stats: tuple = ()
    spray_chart: tuple = ()
    pitch_distribution: tuple = ()
    source_urls: tuple = ()


@dataclass(frozen=True)
class LookupFailure:
    """Result of a specific-player lookup that did not produce a record."""
    message: str
    code: str


@dataclass(frozen=True)
class Completion:
    text: str
    source_urls: list = field(default_factory=list)


# ─── Stat Ordering ──────────────────────────────────────────────────────────

def _stat_label(entry):
    if isinstance(entry, StatItem):
        return entry.label
    if isinstance(entry, dict):
        return entry.get("label")
    return None


def sort_stats(stats, player_type):
    """Return the stats with a usable label, in canonical display order.

    Labels are matched case-insensitively. Anything not in the canonical list
    goes after the known stats, keeping its original relative order.
    """
    if not isinstance(stats, (list, tuple)):
        return []

    order = PITCHER_STAT_ORDER if player_type == "pitcher" else BATTER_STAT_ORDER
    positions = {label.lower(): idx for idx, label in enumerate(order)}
    unknown = len(order)

    valid = []
    for entry in stats:
        label = _stat_label(entry)
        if isinstance(label, str) and label:
            valid.append(entry)

    # sorted() is stable, so ties keep their input order
    return sorted(valid, key=lambda e: positions.get(_stat_label(e).lower(), unknown))


# ─── JSON Extraction ────────────────────────────────────────────────────────

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```")


def extract_json(text):
    """Recover a JSON payload from a free-text completion.

    Tries the whole text, then a ```json fenced block, then the span from the
    first '{' to the last '}'. Raises JsonExtractionFailed if none parse.
    """
    if text is None:
        text = ""

    try:
        return json.loads(text)
    except ValueError:
        pass

    match = _JSON_FENCE.search(text)
    if match:
        try:
            return json.loads(match.group(1))
        except ValueError:
            pass

    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        try:
            return json.loads(text[first:last + 1])
        except ValueError:
            pass

    logger.error(f"Failed to extract JSON from text: {text!r}")
    raise JsonExtractionFailed(text)


# ─── Record Parsing ─────────────────────────────────────────────────────────

def _coerce_rank(raw):
    try:
        rank = int(round(float(raw)))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, min(99, rank))


def _coerce_value(raw):
    if raw is None:
        return ""
    if isinstance(raw, (str, int, float)) and not isinstance(raw, bool):
        return raw
    return str(raw)


def _to_float(raw):
    try:
        return float(raw)
    except (TypeError, ValueError, OverflowError):
        return None


def stat_item_from_dict(entry):
    """Build a StatItem from a provider entry ({label, value, pr})."""
    if isinstance(entry, StatItem):
        return entry
    return StatItem(
        label=entry["label"],
        value=_coerce_value(entry.get("value")),
        percentile_rank=_coerce_rank(entry.get("pr", entry.get("percentile_rank"))),
    )


def _parse_spray_chart(raw):
    points = []
    if not isinstance(raw, list):
        return ()
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        x, y = _to_float(entry.get("x")), _to_float(entry.get("y"))
        result = entry.get("type", entry.get("result"))
        if x is None or y is None or result not in BATTED_BALL_RESULTS:
            continue
        points.append(BattedBall(x=x, y=y, result=result))
    return tuple(points)


def _parse_pitch_distribution(raw):
    pitches = []
    if not isinstance(raw, list):
        return ()
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("type"):
            continue
        bins = []
        points = entry.get("data")
        for point in points if isinstance(points, list) else []:
            if not isinstance(point, dict):
                continue
            speed, count = _to_float(point.get("speed")), _to_float(point.get("count"))
            if speed is None or count is None:
                continue
            bins.append((speed, count))
        mean = _to_float(entry.get("mean"))
        if mean is None:
            total = sum(c for _, c in bins)
            mean = sum(s * c for s, c in bins) / total if total else 0.0
        pitches.append(PitchDistribution(pitch_type=str(entry["type"]), mean=mean, data=tuple(bins)))
    return tuple(pitches)


def parse_player_record(data):
    """Turn a parsed provider payload into a PlayerRecord with sorted stats."""
    player_type = str(data.get("type") or "").strip().lower()
    if player_type not in PLAYER_TYPES:
        player_type = "batter"

    stats = sort_stats(data.get("stats"), player_type)
    return PlayerRecord(
        name=str(data.get("name") or "").strip(),
        team=str(data.get("team") or "").strip(),
        type=player_type,
        year=str(data.get("year") or "").strip(),
        stats=tuple(stat_item_from_dict(s) for s in stats),
        spray_chart=_parse_spray_chart(data.get("sprayChart")),
        pitch_distribution=_parse_pitch_distribution(data.get("pitchDistribution")),
    )


# ─── Completion Provider ────────────────────────────────────────────────────

def collect_source_urls(response):
    """Grounding URLs cited in a Responses API result, in citation order."""
    urls = []
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for part in getattr(item, "content", None) or []:
            for annotation in getattr(part, "annotations", None) or []:
                if getattr(annotation, "type", None) != "url_citation":
                    continue
                url = getattr(annotation, "url", None)
                if url:
                    urls.append(url)
    return urls


class ProviderClient:
    """Text-in/text-out completion with web search turned on."""

    def __init__(self, api_key, model=DEFAULT_MODEL, client=None):
        self.model = model
        self._client = client or OpenAI(api_key=api_key)

    @classmethod
    def from_env(cls):
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is missing.")
        return cls(api_key, model=os.getenv("OPENAI_MODEL", DEFAULT_MODEL))

    def complete(self, prompt):
        logger.debug(f"Requesting completion from {self.model}")
        try:
            response = self._client.responses.create(
                model=self.model,
                tools=[{"type": "web_search_preview"}],
                input=prompt,
            )
        except OpenAIError as exc:
            raise ProviderError(f"Completion request failed: {exc}") from exc
        return Completion(text=response.output_text or "", source_urls=collect_source_urls(response))


# ─── Prompts ────────────────────────────────────────────────────────────────

def build_random_prompt(team, player_type, season):
    """Instruction asking for one random qualified player of the given team/type."""
    return textwrap.dedent(f"""\
        Act as a Data Extraction API.
        Task: Find a random *qualified* (符合進榜資格) active CPBL (Chinese Professional Baseball League) player from the team "{team}" who is a {player_type}.
        Use web search to find their stats for the **{season}** regular season on 'rebas.tw' (野球革命).

        CRITICAL REQUIREMENT:
        1. **YEAR: {season} ONLY**. Do NOT return other seasons or career stats.
        2. The player MUST be "qualified" for the {season} leaderboard (符合{season}進榜資格).
           - Pitchers: IP (投球局數) approx >= Team Games.
           - Batters: PA (打席) approx >= 3.1 * Team Games.

        Do NOT use a hardcoded example. Pick a player effectively at random from the qualified roster/leaderboard.

        Return a VALID JSON object with this structure:
        {{
          "name": "Player Name (Traditional Chinese)",
          "team": "{team}",
          "type": "{player_type}",
          "year": "{season}",
          "stats": [
            {{ "label": "Stat Name", "value": "Stat Value (string or number)", "pr": Number (0-99) }}
          ],
          "sprayChart": [
            {{ "x": Number (-100 to 100), "y": Number (0 to 120), "type": "1B"|"2B"|"3B"|"HR"|"FO" }}
          ],
          "pitchDistribution": [
            {{ "type": "Pitch Name", "mean": Number (speed in kph), "data": [{{"speed": Number, "count": Number}}] }}
          ]
        }}
        "sprayChart" is REQUIRED for a batter (about 20 realistic points from their {season} hitting tendency).
        "pitchDistribution" is REQUIRED for a pitcher (realistic distribution of their {season} pitch types).

        REQUIRED STATS (use these exact column names):
        If Pitcher:
          ERA (防禦率), FIP (場內自責分率), AVG (被打擊率), BABIP (被場內打擊率),
          LOB% (殘壘率), Whiff% (揮空率), K% (奪三振率), BB% (保送率), GB% (滾地球率).
        If Batter:
          wOBA (加權上壘率), AVG (打擊率), SLG (長打率), OBP (上壘率),
          OPS (攻擊指數), ISO (純長打率), BABIP (場內球打擊率),
          Whiff% (揮空率), K% (被三振率), BB% (保送率).

        IMPORTANT:
        - Provide the 'pr' (Percentile Rank) for each stat.
        - Ensure values are accurate for the **{season}** season.
        - Return ONLY the JSON object. Do not add conversational text or explanations.
        """)


def build_specific_prompt(name, season):
    """Instruction asking to validate and fetch one named player."""
    return textwrap.dedent(f"""\
        Act as a Data Extraction API. Your ONLY goal is to output JSON.
        Task: Search for the player "{name}" in CPBL using web search and retrieve their stats for the year **{season}** from 'rebas.tw' (野球革命).

        Perform these checks based on the search results:
        1. Does "{name}" exist in CPBL? If not, return {{ "error": "NOT_FOUND" }}.
        2. Did they play in the Major League (一軍) in {season}? If they only played in the 2nd team or have no records for {season}, return {{ "error": "NO_DATA" }}.
        3. Are they "Qualified" (符合進榜資格) for the {season} season?
           - Pitchers need IP (局數) >= Team Games (approx 120).
           - Batters need PA (打席) >= 3.1 * Team Games (approx 372).
           - If they played but are clearly NOT qualified, return {{ "error": "NOT_QUALIFIED" }}.
        4. If they exist, have data, AND are qualified, return:
           {{
              "name": "{name}",
              "team": "Team Name",
              "type": "pitcher" or "batter",
              "year": "{season}",
              "stats": [ {{ "label": "Stat Name", "value": "Stat Value", "pr": Number (0-99) }} ],
              "sprayChart": [],
              "pitchDistribution": []
           }}

        REQUIRED STATS (match these exactly):
        If Pitcher: ERA, FIP, AVG, BABIP, LOB%, Whiff%, K%, BB%, GB%.
        If Batter: wOBA, AVG, SLG, OBP, OPS, ISO, BABIP, Whiff%, K%, BB%.

        IMPORTANT:
        - Return ONLY the JSON object.
        - Ensure the values correspond to the {season} season.
        """)


# ─── Fetching ───────────────────────────────────────────────────────────────

def fetch_random_player(client=None, rng=random):
    """Fetch a random qualified player for the target season.

    Raises ConfigurationError, ProviderError, JsonExtractionFailed or
    IncompleteData; the caller decides how to surface them.
    """
    if client is None:
        client = ProviderClient.from_env()

    team = rng.choice(CPBL_TEAMS)
    player_type = rng.choice(PLAYER_TYPES)
    season = target_season()
    logger.debug(f"Random pick: team={team} type={player_type} season={season}")

    completion = client.complete(build_random_prompt(team, player_type, season))
    data = extract_json(completion.text)

    if (not isinstance(data, dict) or not data.get("name")
            or not isinstance(data.get("stats"), list) or not data["stats"]):
        logger.warning(f"Incomplete player payload: {data!r}")
        raise IncompleteData("Incomplete data received.")

    record = parse_player_record(data)
    if not record.stats:
        logger.warning(f"No usable stats in payload: {data!r}")
        raise IncompleteData("Incomplete data received.")

    urls = [url for url in completion.source_urls if url]
    if urls:
        record = replace(record, source_urls=tuple(urls))

    logger.info(f"Fetched {record.type} for {record.team} ({record.year}, {len(record.stats)} stats)")
    return record


def lookup_error_message(code, season):
    template = LOOKUP_ERROR_MESSAGES.get(code) if isinstance(code, str) else None
    if template is None:
        return UNKNOWN_LOOKUP_MESSAGE
    return template.format(year=season)


def _lookup_result(name, season, data):
    if not isinstance(data, dict):
        logger.error(f"Unexpected payload for {name!r}: {data!r}")
        return LookupFailure(PARSE_FAILURE_MESSAGE, "PARSE_FAILED")

    code = data.get("error")
    if code:
        logger.warning(f"Lookup for {name!r} returned {code!r}")
        return LookupFailure(lookup_error_message(code, season), str(code))

    record = parse_player_record(data)
    if not record.name:
        record = replace(record, name=name)
    logger.info(f"Fetched comparison data for {name!r} ({len(record.stats)} stats)")
    return record


def fetch_specific_player(name, year=None, client=None):
    """Fetch one named player's stats for comparison.

    Never raises: every failure comes back as a LookupFailure.
    """
    season = year or target_season()
    try:
        if client is None:
            client = ProviderClient.from_env()
        completion = client.complete(build_specific_prompt(name, season))
        return _lookup_result(name, season, extract_json(completion.text))
    except JsonExtractionFailed:
        return LookupFailure(PARSE_FAILURE_MESSAGE, "PARSE_FAILED")
    except Exception:
        logger.exception(f"Specific player fetch failed for {name!r}")
        return LookupFailure(SYSTEM_FAILURE_MESSAGE, "SYSTEM_ERROR")
