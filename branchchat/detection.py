"""Detect several independent questions in one user message.

Three strategies are tried in order, stopping at the first that finds at
least two questions:

1. Numbered or bulleted lists (``1.``, ``2)``, ``-``, ``•``, ``*``)
2. Several runs of text each ending in a question mark
3. Connective words (另外, 还有, "additionally", "also,", ...)
"""

import re
from typing import Literal

from pydantic import BaseModel, Field

DEFAULT_CONFIDENCE_THRESHOLD = 0.5

_LIST_PATTERN = re.compile(
    r"(?:^|\n)\s*(?:\d+[.)]\s*|[-•*]\s+)(.+?)(?=\n\s*(?:\d+[.)]\s*|[-•*]\s+)|\Z)",
    re.DOTALL,
)
_QUESTION_PATTERN = re.compile(r"[^?？]+[?？]")
_CONNECTIVE_PATTERN = re.compile(
    r"另外|还有|还想"
    r"|\b(?:and also|additionally|furthermore|moreover|besides|plus)\b"
    r"|\balso,",
    re.IGNORECASE,
)
_WORD_CHAR = re.compile(r"\w")
_EDGE_PUNCTUATION = " \t\r\n,;，；"

Strategy = Literal["list", "question_marks", "connectives"]


class DetectionResult(BaseModel):
    """Outcome of multi-question detection."""

    has_multiple_questions: bool = False
    questions: list[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    strategy: Strategy | None = None


def _from_list(text: str) -> list[str]:
    blocks = (match.group(1).strip() for match in _LIST_PATTERN.finditer(text))
    return [block for block in blocks if block]


def _from_question_marks(text: str) -> list[str]:
    runs = (match.group(0).strip() for match in _QUESTION_PATTERN.finditer(text))
    # "?!?" style runs carry no question of their own
    return [run for run in runs if _WORD_CHAR.search(run)]


def _from_connectives(text: str) -> list[str]:
    matches = list(_CONNECTIVE_PATTERN.finditer(text))
    if not matches:
        return []

    first = text[: matches[0].start()].strip(_EDGE_PUNCTUATION)
    rest = text[matches[-1].end():].strip(_EDGE_PUNCTUATION)
    if not first or not rest:
        return []
    return [first, rest]


def detect(text: str) -> DetectionResult:
    """Classify text as containing one or several independent questions.

    Args:
        text: Raw user input

    Returns:
        DetectionResult; questions is empty and confidence 0 when fewer
        than two questions were found
    """
    questions = _from_list(text)
    if len(questions) >= 2:
        return DetectionResult(
            has_multiple_questions=True,
            questions=questions,
            confidence=min(0.9, 0.5 + 0.1 * len(questions)),
            strategy="list",
        )

    questions = _from_question_marks(text)
    if len(questions) >= 2:
        return DetectionResult(
            has_multiple_questions=True,
            questions=questions,
            confidence=min(0.8, 0.4 + 0.1 * len(questions)),
            strategy="question_marks",
        )

    questions = _from_connectives(text)
    if len(questions) >= 2:
        return DetectionResult(
            has_multiple_questions=True,
            questions=questions,
            confidence=0.6,
            strategy="connectives",
        )

    return DetectionResult()


def should_auto_branch(
    result: DetectionResult,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> bool:
    """Whether a detection result is confident enough to fan out branches."""
    return result.has_multiple_questions and result.confidence >= threshold
