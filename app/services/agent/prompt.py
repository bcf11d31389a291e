"""Agent prompt templates."""

URGENCY_VALUES = "now,today,this_week,no_rush"

EXTRACTION_SYSTEM_PROMPT = "You output only strict JSON."


def get_reply_system_prompt(business_name: str) -> str:
    """System instruction for short spoken replies."""
    return (
        f"You are the phone receptionist for {business_name}, a trades business. "
        "Stay concise. Confirm what the caller needs, then offer to take a message or book a job. "
        "Ask only what you need to book a job."
    )


def get_reply_user_prompt(utterance: str) -> str:
    """Wrap the caller's latest utterance."""
    return (
        f'Caller said: "{utterance}". Reply in one sentence as a helpful trades receptionist. '
        "Confirm details when you have enough info."
    )


def get_greeting(business_name: str) -> str:
    """Opening line spoken once the media stream starts."""
    return f"Hi, this is FirstRing A I for {business_name}. How can I help you today?"


def get_extraction_prompt(transcript: str) -> str:
    """Ask for the lead fields as a single JSON object."""
    return f"""Extract strict JSON with fields:
  caller_name, suburb, job_type, urgency(one of: {URGENCY_VALUES}), preferred_time, call_summary.
  Only return JSON. Message:
{transcript}"""
