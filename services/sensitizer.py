"""
Sensitizer Module

Stateless text transforms for sensitive vocabulary:

- sanitize_text masks the fixed replacement table with whole-word,
  case-insensitive matching. Masked tokens contain '*', so running it
  again over its own output changes nothing.
- find_sensitive_word / contains_sensitive_content implement the
  autopilot skip filter over a user's own word list.
- censor_text replaces a user's words with asterisks.
"""

import re
from typing import Dict, Iterable, Optional

from config.word_lists import SENSITIVE_REPLACEMENTS
from utils.logger import get_logger

logger = get_logger(__name__)


def _build_pattern(words: Iterable[str]) -> re.Pattern:
    # Longest first so "killed" is not shadowed by "kill" inside the alternation
    ordered = sorted({w.lower() for w in words}, key=len, reverse=True)
    return re.compile(r'\b(' + '|'.join(re.escape(w) for w in ordered) + r')\b', re.IGNORECASE)


_REPLACEMENT_PATTERN = _build_pattern(SENSITIVE_REPLACEMENTS)


def sanitize_text(text: Optional[str], replacements: Optional[Dict[str, str]] = None) -> Optional[str]:
    """
    Mask every whole-word occurrence of a sensitive term.

    Args:
        text: Any text, may be empty or None.
        replacements: Lowercase term to masked token; defaults to SENSITIVE_REPLACEMENTS.

    Returns:
        The masked text, or the input unchanged when it is empty or None.
    """
    if not text:
        return text

    if replacements is None:
        table, pattern = SENSITIVE_REPLACEMENTS, _REPLACEMENT_PATTERN
    else:
        if not replacements:
            return text
        table = {k.lower(): v for k, v in replacements.items()}
        pattern = _build_pattern(table)

    return pattern.sub(lambda m: table[m.group(0).lower()], text)


def _clean_words(words: Optional[Iterable[str]]):
    for word in words or []:
        word = (word or "").strip().lower()
        if word:
            yield word


def find_sensitive_word(text: Optional[str], words: Optional[Iterable[str]]) -> Optional[str]:
    """
    Return the first configured word found in text, or None.

    A whole-word match is tried first, then a plain substring match, so
    "war" also catches "warfare".
    """
    if not text:
        return None

    lowered = text.lower()
    for word in _clean_words(words):
        if re.search(r'\b' + re.escape(word) + r'\b', lowered) or word in lowered:
            return word
    return None


def contains_sensitive_content(text: Optional[str], words: Optional[Iterable[str]]) -> bool:
    word = find_sensitive_word(text, words)
    if word:
        logger.info(f"Found sensitive word {word!r} in: {text[:50]}...")
        return True
    return False


def censor_text(text: Optional[str], words: Optional[Iterable[str]]) -> Optional[str]:
    """Replace each occurrence of a configured word with as many asterisks."""
    if not text:
        return text

    result = text
    for word in _clean_words(words):
        result = re.sub(re.escape(word), '*' * len(word), result, flags=re.IGNORECASE)
    return result
