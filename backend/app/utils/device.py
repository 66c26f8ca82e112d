# Substring tokens, matched case-sensitively as they appear in user agents
MOBILE_TOKENS = ("Mobile", "Android", "iPhone", "iPad", "iPod")
TABLET_TOKENS = ("iPad", "Tablet")


def detect_device_type(user_agent: str) -> str:
    """
    Classify a user agent as mobile, tablet, desktop or unknown.

    Best-effort heuristic over a fixed token list, not a device fingerprint.
    """
    if not user_agent:
        return "unknown"

    if any(token in user_agent for token in MOBILE_TOKENS):
        if any(token in user_agent for token in TABLET_TOKENS):
            return "tablet"
        return "mobile"

    return "desktop"
