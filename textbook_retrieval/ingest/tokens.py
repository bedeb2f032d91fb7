import math


def estimate_tokens(text: str) -> int:
    """
    Approximate token count for a span of English text.

    Averages a word-based estimate (most words are 1+ tokens) with a
    character-based one (about 4 chars per token).
    """
    if not text or not text.strip():
        return 0
    words = len(text.split())
    word_estimate = words * 1.3
    char_estimate = len(text) / 4
    return math.ceil((word_estimate + char_estimate) / 2)
