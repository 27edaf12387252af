from __future__ import annotations

from typing import List, Optional, Tuple

from .utils import normalize_message

# Order matters: the first category with a keyword hit wins.
MOOD_KEYWORDS: List[Tuple[str, List[str]]] = [
    ("tired", ["tired", "exhausted", "sleepy", "worn out", "drained", "no energy"]),
    ("happy", ["happy", "great day", "excited", "celebrat", "cheerful", "good mood"]),
    ("sad", ["sad", "down", "depressed", "lonely", "upset", "blue"]),
    ("stressed", ["stressed", "stress", "anxious", "overwhelmed", "busy", "deadline"]),
    ("bored", ["bored", "boring", "nothing to do", "dull"]),
    ("energetic", ["energetic", "pumped", "workout", "active", "gym", "motivated"]),
    ("hungry", ["hungry", "starving", "famished", "snack", "craving"]),
    ("relaxed", ["relaxed", "chill", "calm", "lazy sunday", "cozy", "unwind"]),
]


def detect_mood(message: str) -> Optional[str]:
    """Purpose: Classify the user's mood from keyword membership.
    Inputs/Outputs: Input is a raw message; output is a mood category or None.
    Side Effects / State: None; pure function.
    Dependencies: Uses MOOD_KEYWORDS and normalize_message.
    Failure Modes: Substring matching can fire inside longer words ("blue" in "blueberries").
    If Removed: Deals and recommendations lose their mood bias; routing is unaffected.
    Testing Notes: "so tired and hungry" is "tired" because tired is checked first.
    """
    normalized = normalize_message(message)
    if not normalized:
        return None
    for mood, keywords in MOOD_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return mood
    return None
