import json
import re
from dataclasses import dataclass

from xat_api.errors import SentimentFormatError

MIN_SCORE = 0.0
MAX_SCORE = 10.0

SENTIMENT_PROMPT = """Analitza el sentiment del seguent text i respon amb un JSON amb aquesta estructura exacta:
{{
    "score": X.X,
    "sentiment": "positiu/negatiu/neutral"
}}

"score" es un número del 0 al 10 (0 = molt negatiu, 5 = neutral, 10 = molt positiu).
El sentiment ha de ser: "positiu" (score > 6), "neutral" (score 4-6) o "negatiu" (score < 4).

Text a analitzar: "{text}"

Respon NOMÉS amb el JSON, sense cap text més."""

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


@dataclass(frozen=True)
class SentimentResult:
    score: float
    sentiment: str


def build_sentiment_prompt(text: str) -> str:
    return SENTIMENT_PROMPT.format(text=text)


def strip_code_fences(raw: str) -> str:
    """Remove markdown code fences (```json ... ```) around model output."""
    text = raw.strip()
    if text.startswith("```"):
        text = _FENCE_RE.sub("", text)
    return text.strip()


def clamp_score(score: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, float(score)))


def parse_sentiment(raw: str) -> SentimentResult:
    """
    Extract the score/label pair from raw model output.

    Args:
        raw: Text returned by the model, possibly wrapped in code fences

    Returns:
        SentimentResult with the score clamped into [0, 10]

    Raises:
        SentimentFormatError: If the text is not a JSON object or a field is missing
    """
    try:
        data = json.loads(strip_code_fences(raw))
    except ValueError as e:
        raise SentimentFormatError(f"Model output is not JSON: {e}", raw=raw) from e

    if not isinstance(data, dict):
        raise SentimentFormatError("Model output is not a JSON object", raw=raw)

    score = data.get("score")
    # bool is an int subclass but never a valid score
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise SentimentFormatError("Missing or non-numeric 'score'", raw=raw)

    sentiment = data.get("sentiment")
    if not sentiment:
        raise SentimentFormatError("Missing 'sentiment'", raw=raw)

    return SentimentResult(score=clamp_score(score), sentiment=str(sentiment))
