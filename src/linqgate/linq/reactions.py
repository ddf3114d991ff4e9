"""Emoji -> Linq (iMessage tapback) reaction types."""

from __future__ import annotations

_EMOJI_TO_REACTION: dict[str, str] = {
    "❤️": "love", "♥️": "love", "🩷": "love", "💕": "love", "😍": "love",
    "👍": "like", "👍🏻": "like", "👍🏼": "like", "👍🏽": "like", "👍🏾": "like", "👍🏿": "like",
    "👎": "dislike", "👎🏻": "dislike", "👎🏼": "dislike", "👎🏽": "dislike", "👎🏾": "dislike", "👎🏿": "dislike",
    "😂": "laugh", "🤣": "laugh", "😆": "laugh",
    "‼️": "emphasize", "❗": "emphasize", "❕": "emphasize", "⚡": "emphasize",
    "❓": "question", "❔": "question", "🤔": "question",
}

DEFAULT_REACTION_EMOJI = "❤️"
DEFAULT_REACTION = "love"


def emoji_to_reaction(emoji: str) -> str | None:
    """Linq reaction type for an emoji, or None if it has no tapback."""
    return _EMOJI_TO_REACTION.get(emoji.strip())
