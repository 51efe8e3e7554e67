"""
Lexical sentiment classification for mention content.

Keyword matching over title + body, used to colour the dashboard.
Positive matches win over negative ones.
"""

import re
from enum import Enum
from typing import Optional


class Sentiment(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"
    UNKNOWN = "UNKNOWN"


POSITIVE_PATTERN = re.compile(r"good|great|awesome|love|amazing", re.IGNORECASE)
NEGATIVE_PATTERN = re.compile(r"bad|terrible|hate|awful|problem", re.IGNORECASE)


def classify(text: Optional[str]) -> Sentiment:
    """
    Classify text as POSITIVE, NEGATIVE, NEUTRAL or UNKNOWN.

    Examples:
        >>> classify("this is great and amazing")
        <Sentiment.POSITIVE: 'POSITIVE'>
        >>> classify("   ")
        <Sentiment.UNKNOWN: 'UNKNOWN'>
    """
    if not text or not text.strip():
        return Sentiment.UNKNOWN
    if POSITIVE_PATTERN.search(text):
        return Sentiment.POSITIVE
    if NEGATIVE_PATTERN.search(text):
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL
