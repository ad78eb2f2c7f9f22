"""Utility functions for devcli."""

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValueError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def first_line(output: str) -> str:
    """Return the first non-blank line of tool output, stripped."""
    for line in output.splitlines():
        if line.strip():
            return line.strip()
    return ""


def first_word(output: str) -> str:
    """Return the first whitespace-separated token of tool output."""
    words = output.split()
    return words[0] if words else ""
