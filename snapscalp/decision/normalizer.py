"""
Response normalization: turn whatever text a provider returned into an
AnalysisPayload the presentation layer can render without further checks.

Two layers of defaulting are applied:
- structural: text that is not a JSON object becomes the fallback payload
  (Wait / 50 / reason explaining the failure)
- field level: every field of a parsed object is coerced and truncated to its
  limits, missing fields get defaults
"""

import json
import logging
import math
import re
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import ParseError

logger = logging.getLogger(__name__)

MAX_REASON_CHARS = 80
MAX_CONDITIONS_CHARS = 60
MAX_INVALIDATE_CHARS = 40
MAX_SCENARIOS = 2
MAX_TARGETS = 3
MAX_LEVELS = 2

FALLBACK_CONFIDENCE = 50
PARSE_ERROR_REASON = "JSON parsing error"

JSON_BLOCK_RE = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


class Decision(str, Enum):
    LONG = "Long"
    SHORT = "Short"
    WAIT = "Wait"


class Side(str, Enum):
    LONG = "Long"
    SHORT = "Short"


def _match_enum(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if member.value.lower() == value.strip().lower():
                return member
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    # prices sometimes come back as numbers
    return str(value)


def _text_list(value: Any, limit: int) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [_text(v) for v in value if v is not None][:limit]


def coerce_confidence(value: Any) -> int:
    """Integer confidence in 0..100; anything non-numeric counts as 0."""
    if isinstance(value, bool) or value is None:
        result = 0
    elif isinstance(value, int):
        result = value
    elif isinstance(value, float):
        result = int(value) if math.isfinite(value) else 0
    elif isinstance(value, str):
        match = LEADING_INT_RE.match(value)
        result = int(match.group(1)) if match else 0
    else:
        result = 0
    return max(0, min(100, result))


class Scenario(BaseModel):
    side: Optional[Side] = None
    entry: str = ""
    stop: str = ""
    targets: List[str] = Field(default_factory=list)
    conditions: str = ""
    invalidate: str = ""

    @field_validator("side", mode="before")
    @classmethod
    def _side(cls, v):
        return _match_enum(Side, v)

    @field_validator("entry", "stop", mode="before")
    @classmethod
    def _price(cls, v):
        return _text(v)

    @field_validator("targets", mode="before")
    @classmethod
    def _targets(cls, v):
        return _text_list(v, MAX_TARGETS)

    @field_validator("conditions", mode="before")
    @classmethod
    def _conditions(cls, v):
        return _text(v)[:MAX_CONDITIONS_CHARS]

    @field_validator("invalidate", mode="before")
    @classmethod
    def _invalidate(cls, v):
        return _text(v)[:MAX_INVALIDATE_CHARS]


class Levels(BaseModel):
    support: List[str] = Field(default_factory=list)
    resistance: List[str] = Field(default_factory=list)

    @field_validator("support", "resistance", mode="before")
    @classmethod
    def _levels(cls, v):
        return _text_list(v, MAX_LEVELS)


class AnalysisPayload(BaseModel):
    decision: Decision = Decision.WAIT
    confidence: int = 0
    reason: str = ""
    scenarios: List[Scenario] = Field(default_factory=list)
    levels: Levels = Field(default_factory=Levels)

    @field_validator("decision", mode="before")
    @classmethod
    def _decision(cls, v):
        return _match_enum(Decision, v) or Decision.WAIT

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return coerce_confidence(v)

    @field_validator("reason", mode="before")
    @classmethod
    def _reason(cls, v):
        return _text(v)[:MAX_REASON_CHARS]

    @field_validator("scenarios", mode="before")
    @classmethod
    def _scenarios(cls, v):
        if not isinstance(v, (list, tuple)):
            return []
        return [s for s in v if isinstance(s, (dict, Scenario))][:MAX_SCENARIOS]

    @field_validator("levels", mode="before")
    @classmethod
    def _levels(cls, v):
        if isinstance(v, (dict, Levels)):
            return v
        return {}

    def to_json(self) -> str:
        return self.model_dump_json()


def fallback_payload(reason: str = PARSE_ERROR_REASON) -> AnalysisPayload:
    return AnalysisPayload(
        decision=Decision.WAIT,
        confidence=FALLBACK_CONFIDENCE,
        reason=reason,
    )


def extract_json_text(raw_text: Optional[str]) -> str:
    """Strip markdown fences around a JSON body."""
    cleaned = (raw_text or "").strip()
    match = JSON_BLOCK_RE.search(cleaned)
    if match:
        logger.debug("Extracted JSON from markdown block")
        return match.group(1).strip()
    if len(cleaned) >= 6 and cleaned.startswith("```") and cleaned.endswith("```"):
        logger.debug("Extracted content from generic code block")
        return cleaned[3:-3].strip()
    return cleaned


def parse_payload_object(text: str) -> dict:
    try:
        data = json.loads(text)
    except (ValueError, RecursionError, TypeError) as e:
        raise ParseError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"expected a JSON object, got {type(data).__name__}")
    return data


def normalize(raw_text: Optional[str], fallback_reason: str = PARSE_ERROR_REASON) -> AnalysisPayload:
    """Normalize raw provider text. Never raises."""
    cleaned = extract_json_text(raw_text)
    try:
        data = parse_payload_object(cleaned)
        return AnalysisPayload.model_validate(data)
    except (ParseError, ValidationError) as e:
        logger.warning(f"JSON validation failed: {e}")
        logger.debug(f"Problematic content: {cleaned!r}")
        return fallback_payload(fallback_reason)
