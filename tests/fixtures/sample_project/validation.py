"""Input validation helpers."""

import re

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[a-z]+$")


def validate_email(email):
    """Return True when *email* looks like an address."""
    return bool(EMAIL_PATTERN.match(email))


def normalise_name(first, last):
    return f"{first.strip().title()} {last.strip().title()}"
