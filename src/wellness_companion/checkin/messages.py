"""User-facing check-in texts."""

CHECK_IN_PROMPT = (
    "Good morning! 🌅 It's time for your daily check-in. How are you feeling today? "
    "Take a moment to reflect on your emotional state and share what's on your mind."
)

TIMEOUT_REMINDER = (
    "I noticed you haven't responded to today's check-in. That's okay! "
    "Feel free to share how you're feeling whenever you're ready. I'm here for you. 💙"
)

# Characters of the user's reply quoted in the stored summary
SUMMARY_QUOTE_LIMIT = 200


def build_check_in_summary(tone: str, reply: str) -> str:
    """Summary stored in the ledger for one check-in."""
    return f"Daily check-in: User reported feeling {tone}. Response: {reply[:SUMMARY_QUOTE_LIMIT]}..."


def format_summary_message(tone: str, recommendations: list[str]) -> str:
    """Closing message sent after a completed check-in."""
    numbered = "\n".join(f"{i}. {item}" for i, item in enumerate(recommendations, start=1))
    return (
        "Thank you for your check-in! Based on your response, I've noted that you're feeling "
        f"{tone}. Here are some personalized recommendations:\n\n{numbered}\n\nTake care! 💙"
    )


def format_task_message(description: str | None) -> str:
    return f"Running scheduled task: {description or 'unnamed task'}"
