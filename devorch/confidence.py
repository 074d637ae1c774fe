"""Pull the agent's self-reported confidence out of free-form reply text."""

import json
import logging
from collections.abc import Iterator

from pydantic import ValidationError

from devorch.models import ConfidenceAssessment

logger = logging.getLogger(__name__)

CONFIDENCE_PROMPT = (
    "Before starting any work, assess how confident you are that you can resolve this issue. "
    'Reply with a single JSON object of the form {"score": <integer 0-100>, "reasoning": "<one or two sentences>"} '
    "and nothing else."
)

_decoder = json.JSONDecoder()


def iter_json_objects(text: str) -> Iterator[dict]:
    """Yield every top-level JSON object embedded in text, left to right."""
    start = text.find("{")
    while start != -1:
        try:
            obj, end = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            yield obj
        start = text.find("{", end)


def parse_confidence(text: str) -> ConfidenceAssessment | None:
    """Return the first embedded object with a valid ``score``, or None if there is none yet."""
    for obj in iter_json_objects(text):
        if "score" not in obj:
            continue
        try:
            return ConfidenceAssessment.model_validate(obj)
        except ValidationError as exc:
            logger.warning("Ignoring malformed confidence block %r: %s", obj, exc)
    return None
