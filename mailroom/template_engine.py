"""
Mailroom Fee Engine -- Notification Template Engine

Staff-authored notification templates use simple placeholders, written
either ``{{Name}}`` or ``{Name}``.  ``render()`` substitutes them in one
pass:

  - every occurrence of each known key is replaced, in subject and body
  - values are inserted literally; backslashes, ``$`` and braces inside a
    value are never interpreted, and a value is never re-scanned for
    further placeholders
  - ``None`` renders as the empty string
  - placeholders with no matching key are left in the output unchanged

Pluralization is not done inside ``render()``: callers precompute
``LetterText`` / ``PackageText`` alongside the counts (see
``build_pickup_variables``).

The rendered plain-text body is wrapped into an HTML email with a small
Jinja2 template (autoescaped, newlines become ``<br>``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from jinja2 import Environment, select_autoescape

from .calendar_days import format_business_date, now_utc
from .models import Contact

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_NAME = "Valued Customer"
DEFAULT_BOX_NUMBER = "N/A"

_EMAIL_SHELL = """\
<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <style>
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .email-container { max-width: 600px; margin: 0 auto; padding: 20px; }
  </style>
</head>
<body>
  <div class="email-container">
    {% for line in lines %}{{ line }}{% if not loop.last %}<br>
    {% endif %}{% endfor %}
  </div>
</body>
</html>
"""

_env = Environment(
    autoescape=select_autoescape(default_for_string=True, default=True),
    keep_trailing_newline=True,
)
_shell_template = _env.from_string(_EMAIL_SHELL)


# ---------------------------------------------------------------------------
# Helper: Format Utilities
# ---------------------------------------------------------------------------

def format_currency(amount: float | None) -> str:
    """Format a float as USD currency: '$1,510.00'.

    Returns '$0.00' for None.
    """
    if amount is None:
        return "$0.00"
    return f"${amount:,.2f}"


def pluralize(count: int, singular: str, plural: Optional[str] = None) -> str:
    """Pick the word form for ``count``.

    >>> pluralize(1, "letter")
    'letter'
    >>> pluralize(0, "package")
    'packages'
    """
    if count == 1:
        return singular
    return plural if plural is not None else f"{singular}s"


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

@dataclass
class RenderedTemplate:
    """Subject and plain-text body after substitution."""
    subject: str
    body: str


def _substitute(text: str, pattern: re.Pattern[str] | None, values: dict[str, str]) -> str:
    if not text or pattern is None:
        return text or ""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1) if match.group(1) is not None else match.group(2)
        return values[key]

    return pattern.sub(_replace, text)


def _build_pattern(keys: list[str]) -> re.Pattern[str] | None:
    if not keys:
        return None
    # Longest first so a key that prefixes another can't shadow it.
    alternation = "|".join(re.escape(k) for k in sorted(keys, key=len, reverse=True))
    # Double-brace form is tried first at each position.
    return re.compile(r"\{\{(" + alternation + r")\}\}|\{(" + alternation + r")\}")


def render(
    subject_template: str,
    body_template: str,
    variables: Mapping[str, Any],
) -> RenderedTemplate:
    """Substitute ``{{KEY}}`` and ``{KEY}`` placeholders in subject and body.

    >>> render("Hi {{Name}}", "You have {LetterCount} {LetterText}",
    ...        {"Name": "Ana", "LetterCount": 1, "LetterText": "letter"}).body
    'You have 1 letter'
    """
    values = {
        str(key): "" if value is None else str(value)
        for key, value in variables.items()
    }
    pattern = _build_pattern(list(values))
    return RenderedTemplate(
        subject=_substitute(subject_template, pattern, values),
        body=_substitute(body_template, pattern, values),
    )


def text_to_html(body: str) -> str:
    """Wrap a plain-text body into the HTML email shell."""
    return _shell_template.render(lines=(body or "").split("\n"))


# ---------------------------------------------------------------------------
# Variable Builders
# ---------------------------------------------------------------------------

def build_pickup_variables(
    contact: Contact,
    letter_count: int,
    package_count: int,
    as_of: Optional[datetime | str] = None,
    total_fees: float = 0.0,
) -> dict[str, Any]:
    """Standard variables for a "mail waiting for pickup" notification."""
    if as_of is None:
        as_of = now_utc()
    return {
        "Name": contact.contact_person or contact.company_name or DEFAULT_NAME,
        "BoxNumber": contact.mailbox_number or DEFAULT_BOX_NUMBER,
        "LetterCount": letter_count,
        "LetterText": pluralize(letter_count, "letter"),
        "PackageCount": package_count,
        "PackageText": pluralize(package_count, "package"),
        "TotalCount": letter_count + package_count,
        "TotalFees": format_currency(total_fees),
        "Date": format_business_date(as_of),
    }
