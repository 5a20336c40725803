"""
Response Parser
Turns the model's "### HEADING" formatted reply into structured fields.

Model output is free text, so every field degrades to an empty string or
zero when its section is missing instead of raising.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

HEADING_RE = re.compile(r"^[ \t]*###[ \t]*([A-Za-z][A-Za-z \t]*?)[ \t]*$", re.MULTILINE)
INTEGER_RE = re.compile(r"(\d+)")
DECIMAL_RE = re.compile(r"(\d+\.?\d*)")
EDGE_RE = re.compile(r"Edge Score:\s*([+-]?\d+\.?\d*)%", re.IGNORECASE)

# Scanned in order; first keyword found wins
OUTCOME_KEYWORDS = [
    ("NO BET", None),
    ("HOME", "home"),
    ("AWAY", "away"),
    ("OVER", "over"),
    ("UNDER", "under"),
]


@dataclass
class ParsedPrediction:
    predicted_winner: Optional[str]
    confidence_score: int
    true_probability: float
    recommended_bet_type: str
    recommended_line: str
    key_factors: List[str] = field(default_factory=list)
    ai_analysis: str = ""
    risk_assessment: str = ""


def normalize_heading(heading: str) -> str:
    return re.sub(r"\s+", "_", heading.strip().lower())


def extract_sections(response: str) -> Dict[str, str]:
    """Map normalized heading name (e.g. "confidence_level") to its trimmed body."""
    sections: Dict[str, str] = {}
    matches = list(HEADING_RE.finditer(response or ""))
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(response)
        sections[normalize_heading(match.group(1))] = response[match.end():end].strip()
    return sections


def parse_winner(prediction_text: str) -> Optional[str]:
    for keyword, outcome in OUTCOME_KEYWORDS:
        if keyword in prediction_text:
            return outcome
    return None


def parse_confidence(confidence_text: str) -> int:
    match = INTEGER_RE.search(confidence_text)
    if not match:
        return 0
    return max(0, min(100, int(match.group(1))))


def parse_true_probability(probability_text: str) -> float:
    match = DECIMAL_RE.search(probability_text)
    return float(match.group(1)) if match else 0.0


def parse_factors(factors_text: str) -> List[str]:
    factors = []
    for line in factors_text.split("\n"):
        line = line.strip()
        if not line.startswith("-"):
            continue
        factor = re.sub(r"^-\s*", "", line).strip()
        if factor:
            factors.append(factor)
    return factors


def parse_ai_response(response: str, bet_type: str) -> ParsedPrediction:
    """Parse the model reply into a ParsedPrediction."""
    sections = extract_sections(response)

    return ParsedPrediction(
        predicted_winner=parse_winner(sections.get("prediction", "")),
        confidence_score=parse_confidence(sections.get("confidence_level", "")),
        true_probability=parse_true_probability(sections.get("true_probability_estimate", "")),
        recommended_bet_type=bet_type,
        recommended_line=sections.get("recommended_bet", ""),
        key_factors=parse_factors(sections.get("key_factors", "")),
        ai_analysis=sections.get("detailed_analysis", ""),
        risk_assessment=sections.get("risk_assessment", ""),
    )


def parse_edge_calculation(response: str) -> float:
    """Edge the model reported itself, from an "Edge Score: +4.5%" line."""
    match = EDGE_RE.search(response or "")
    return float(match.group(1)) if match else 0.0


def validate_parsed_prediction(parsed: ParsedPrediction) -> bool:
    """Minimum fields for a usable prediction: confidence, analysis and factors."""
    return bool(
        parsed.confidence_score > 0
        and parsed.ai_analysis
        and parsed.key_factors
    )
