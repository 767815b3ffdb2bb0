"""
Utility for formatting credentials for display in logs and statistics.

API keys are never written out in full; only the last 6 characters are
shown so that operators can still tell keys apart.
"""


def format_credential_for_display(credential: str) -> str:
    """
    Format an API key for display in logs.

    Args:
        credential: The raw API key

    Returns:
        A display-safe string representation of the key

    Examples:
        >>> format_credential_for_display("AIzaSy1234567890abcdef")
        "...abcdef"
        >>> format_credential_for_display("abc")
        "...abc"
    """
    if not credential:
        return "<empty>"
    return f"...{credential[-6:]}"
