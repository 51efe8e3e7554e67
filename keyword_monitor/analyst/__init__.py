"""
Content analysis for discovered mentions.
"""

from .sentiment import Sentiment, classify

__all__ = ["Sentiment", "classify"]
