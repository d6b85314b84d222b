"""
Contraindication Alert Engine - Text Processing
Normalisation shared by substance matching and condition inference
"""
import re
import unicodedata
from typing import Any, List


# Separators practitioners use when listing substances in a plan section.
# A dash separates only when it opens an item or stands alone, never inside a
# hyphenated name such as Saint-Jean.
PLAN_DELIMITERS = re.compile(r'[,;\n•·]+|(?<!\S)-+')


class TextProcessor:
    """Utilities for processing free-text French intake and plan content"""

    COMBINING_MARKS = re.compile(r'[\u0300-\u036f]')

    @classmethod
    def normalize(cls, text: str) -> str:
        """Normalize text for matching: lower-case, strip accents, collapse spaces"""
        if not text:
            return ""

        text = unicodedata.normalize("NFD", str(text).lower())

        # Remove diacritics
        text = cls.COMBINING_MARKS.sub('', text)

        # Remove extra whitespace
        return ' '.join(text.split())

    @classmethod
    def flatten(cls, value: Any) -> List[str]:
        """Flatten nested answer values (dicts, lists, scalars) into strings"""
        if value is None:
            return []
        if isinstance(value, dict):
            parts = []
            for nested in value.values():
                parts.extend(cls.flatten(nested))
            return parts
        if isinstance(value, (list, tuple, set)):
            parts = []
            for nested in value:
                parts.extend(cls.flatten(nested))
            return parts
        text = str(value).strip()
        return [text] if text else []

    @classmethod
    def split_plan_text(cls, text: str) -> List[str]:
        """Split a plan section into candidate substance phrases"""
        if not text:
            return []
        return [p.strip() for p in PLAN_DELIMITERS.split(text) if p.strip()]
