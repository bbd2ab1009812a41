"""Chat title derived from the first user message."""
from app.models.chat import DEFAULT_CHAT_TITLE

STOP_WORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had",
    "her", "was", "one", "our", "out", "day", "get", "has", "him", "his",
    "how", "its", "may", "new", "now", "old", "see", "two", "way", "who",
    "boy", "did", "man", "why",
})

MAX_TITLE_WORDS = 3
MAX_TITLE_LENGTH = 30


def synthesize_title(first_message: str) -> str:
    """
    Build a short title from the first meaningful words of a message.

    Words of two characters or fewer and stop words are dropped; the first
    three that remain are capitalized and joined. Results longer than 30
    characters are cut and suffixed with "...".
    """
    words = [
        word for word in first_message.lower().split()
        if len(word) > 2 and word not in STOP_WORDS
    ]
    if not words:
        return DEFAULT_CHAT_TITLE

    title = " ".join(word[0].upper() + word[1:] for word in words[:MAX_TITLE_WORDS])
    if len(title) > MAX_TITLE_LENGTH:
        return title[:MAX_TITLE_LENGTH] + "..."
    return title
