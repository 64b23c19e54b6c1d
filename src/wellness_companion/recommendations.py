"""Tone-to-recommendation mapping."""

from wellness_companion.errors import ValidationError

PROFESSIONAL_SUPPORT = (
    "Consider reaching out to a mental health professional or crisis support line if needed"
)

# Intensity at or above which a negative check-in also suggests professional support
HIGH_INTENSITY = 7

RECOMMENDATIONS: dict[str, tuple[str, ...]] = {
    "positive": (
        "Practice gratitude journaling - write down 3 things you're grateful for today",
        "Share your positive energy with others - reach out to a friend or loved one",
        "Set new goals while feeling motivated - channel this energy into something meaningful",
    ),
    "neutral": (
        "Take a mindful walk - focus on your breathing and surroundings",
        "Practice deep breathing exercises - 4-7-8 technique",
        "Try a new hobby or activity - explore something that interests you",
    ),
    "negative": (
        "Practice 4-7-8 breathing technique - inhale for 4, hold for 7, exhale for 8",
        "Write down your feelings in a journal - express what you're experiencing",
        "Consider talking to a trusted friend or professional - you don't have to go through this alone",
    ),
}


def select_recommendations(tone: str, intensity: int = 5) -> list[str]:
    """Return coping recommendations for an emotional tone.

    Unknown tones get the neutral list. Negative tones at high intensity get
    an extra professional-support suggestion appended.

    Raises:
        ValidationError: If intensity is outside 1-10.
    """
    if isinstance(intensity, bool) or not isinstance(intensity, int) or not 1 <= intensity <= 10:
        raise ValidationError(f"Intensity must be an integer between 1 and 10, got {intensity!r}")

    key = (tone or "").strip().lower()
    items = list(RECOMMENDATIONS.get(key, RECOMMENDATIONS["neutral"]))
    if key == "negative" and intensity >= HIGH_INTENSITY:
        items.append(PROFESSIONAL_SUPPORT)
    return items
