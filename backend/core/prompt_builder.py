"""
Prompt Builder
Sport/bet-type prompt templates and placeholder substitution.

Placeholders are written as {name}. Only names present in the context are
replaced; anything else is left in the text as-is.
"""
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from backend.config import AI_CONFIG, BET_TYPE_MARKETS
from backend.integrations.odds_api import get_outcome_line

OUTPUT_FORMAT = """
## Your Task
Provide your analysis in this EXACT format:

### PREDICTION
[{prediction_hint}]

### CONFIDENCE LEVEL
[Score 0-100. Only recommend if >65]

### TRUE PROBABILITY ESTIMATE
[Your calculated probability: XX.X%]

### EDGE CALCULATION
Show your math for expected value calculation

### RECOMMENDED BET
[{bet_hint}]

### KEY FACTORS
- Factor 1 with specific evidence
- Factor 2 with numbers/stats
- Factor 3 with context

### DETAILED ANALYSIS
[2-3 paragraphs explaining your reasoning]

### RISK ASSESSMENT
[One sentence stating the primary risk]

IMPORTANT: If confidence is <65% or edge is <2%, recommend "NO BET"
""".strip()


@dataclass(frozen=True)
class PromptTemplate:
    sport_type: str
    bet_type: str
    system_instructions: str
    prompt_template: str


def _system_instructions(analyst: str) -> str:
    return (
        f"You are an elite {analyst} betting analyst. Only recommend bets with "
        f">{AI_CONFIG['min_confidence']}% confidence and positive edge "
        f"(>{AI_CONFIG['min_edge']:g}% expected value).\n\n{{learning_insights}}"
    )


def _output_format(prediction_hint: str, bet_hint: str) -> str:
    # str.replace so the {placeholders} in the surrounding template survive
    return OUTPUT_FORMAT.replace("{prediction_hint}", prediction_hint).replace("{bet_hint}", bet_hint)


_MONEYLINE_FORMAT = _output_format(
    'State: "HOME", "AWAY", or "NO BET"',
    'Format: "Team Name Moneyline at odds" or "NO BET"',
)
_SPREAD_FORMAT = _output_format(
    'State which team will cover: "HOME", "AWAY", or "NO BET"',
    'Format: "Team Name +/- spread at odds" or "NO BET"',
)


NFL_MONEYLINE_PROMPT = PromptTemplate(
    sport_type="nfl",
    bet_type="moneyline",
    system_instructions=_system_instructions("NFL"),
    prompt_template=f"""
Analyze this NFL game for moneyline betting opportunities.

## Game Details
Home Team: {{home_team}}
Away Team: {{away_team}}
Game Time: {{commence_time}}

## Current Betting Lines
{{betting_lines}}

{_MONEYLINE_FORMAT}
""".strip(),
)

NBA_SPREAD_PROMPT = PromptTemplate(
    sport_type="nba",
    bet_type="spread",
    system_instructions=_system_instructions("NBA"),
    prompt_template=f"""
Analyze this NBA game for spread betting opportunities.

## Game Details
Home Team: {{home_team}}
Away Team: {{away_team}}
Game Time: {{commence_time}}
Spread: {{spread}}

## Current Betting Lines
{{betting_lines}}

{_SPREAD_FORMAT}
""".strip(),
)

PROMPT_TEMPLATES = {
    ("nfl", "moneyline"): NFL_MONEYLINE_PROMPT,
    ("nba", "spread"): NBA_SPREAD_PROMPT,
}


def _generic_template(sport: str, bet_type: str) -> PromptTemplate:
    if bet_type == "total":
        prediction_hint = 'State: "OVER", "UNDER", or "NO BET"'
        bet_hint = 'Format: "Over/Under total at odds" or "NO BET"'
    else:
        prediction_hint = 'State: "HOME", "AWAY", or "NO BET"'
        bet_hint = f'Format: "Team Name {bet_type} at odds" or "NO BET"'

    return PromptTemplate(
        sport_type=sport,
        bet_type=bet_type,
        system_instructions=_system_instructions("sports"),
        prompt_template=f"""
Analyze this {sport.upper()} game for {bet_type} betting opportunities.

## Game Details
{{game_details}}

## Current Betting Lines
{{betting_lines}}

## Team Statistics
{{team_stats}}

{_output_format(prediction_hint, bet_hint)}
""".strip(),
    )


def get_prompt_template(sport: str, bet_type: str) -> PromptTemplate:
    """Specific template for (sport, bet type), else the generic one."""
    return PROMPT_TEMPLATES.get((sport, bet_type)) or _generic_template(sport, bet_type)


def _render_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2, default=str)
    return str(value)


def build_prompt(
    template: PromptTemplate,
    context: Dict[str, Any],
    learning_insights: Optional[str] = None,
) -> str:
    """
    Render system instructions + template with every known {name} substituted.

    Unknown placeholders are left verbatim; the {learning_insights} slot is
    emptied when no insights are supplied.
    """
    values = {key: _render_value(value) for key, value in context.items()}
    values["learning_insights"] = learning_insights or ""

    text = template.system_instructions + "\n\n" + template.prompt_template

    def _substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        return values[name] if name in values else match.group(0)

    # Single pass so substituted values are never re-scanned for placeholders
    rendered = re.sub(r"\{(\w+)\}", _substitute, text)
    return re.sub(r"\n{3,}", "\n\n", rendered)


def build_prediction_context(event: Dict[str, Any], sport: str, bet_type: str) -> Dict[str, Any]:
    """Placeholder values for an event: teams, start time, lines and odds."""
    odds = event.get("odds_data") or []
    home_spread = get_outcome_line(odds, BET_TYPE_MARKETS["spread"], event.get("home_team"))
    over = get_outcome_line(odds, BET_TYPE_MARKETS["total"], "Over")

    spread = "N/A"
    if home_spread and home_spread.get("point") is not None:
        spread = f"{event.get('home_team')} {home_spread['point']:+g}"

    total = over["point"] if over and over.get("point") is not None else "N/A"

    game_details = "\n".join([
        f"Home Team: {event.get('home_team')}",
        f"Away Team: {event.get('away_team')}",
        f"Game Time: {event.get('commence_time')}",
        f"Sport: {sport}",
        f"Bet Type: {bet_type}",
    ])

    return {
        "home_team": event.get("home_team"),
        "away_team": event.get("away_team"),
        "commence_time": event.get("commence_time"),
        "game_details": game_details,
        "betting_lines": odds,
        "spread": spread,
        "total": total,
        "team_stats": "Team statistics not available; rely on betting lines and public information.",
    }
