"""
auth/policy.py -- Password strength rules.

All five rules are checked independently so a caller sees every problem with
a candidate password in one response rather than fixing them one at a time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from auth.errors import WeakPassword

MIN_LENGTH = 8
SYMBOLS = '!@#$%^&*(),.?":{}|<>'


class Violation(str, Enum):
    TOO_SHORT = "too_short"
    NO_UPPERCASE = "no_uppercase"
    NO_LOWERCASE = "no_lowercase"
    NO_DIGIT = "no_digit"
    NO_SYMBOL = "no_symbol"

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_MESSAGES = {
    Violation.TOO_SHORT: f"Password must be at least {MIN_LENGTH} characters long",
    Violation.NO_UPPERCASE: "Password must contain at least one uppercase letter",
    Violation.NO_LOWERCASE: "Password must contain at least one lowercase letter",
    Violation.NO_DIGIT: "Password must contain at least one number",
    Violation.NO_SYMBOL: "Password must contain at least one special character",
}

_RULES: list[tuple[Violation, re.Pattern]] = [
    (Violation.NO_UPPERCASE, re.compile(r"[A-Z]")),
    (Violation.NO_LOWERCASE, re.compile(r"[a-z]")),
    (Violation.NO_DIGIT, re.compile(r"[0-9]")),
    (Violation.NO_SYMBOL, re.compile("[" + re.escape(SYMBOLS) + "]")),
]


@dataclass(frozen=True)
class PolicyResult:
    violations: list[Violation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.violations

    @property
    def messages(self) -> list[str]:
        return [v.message for v in self.violations]


def validate(password: str) -> PolicyResult:
    """Return every rule the password breaks, in a stable order."""
    violations: list[Violation] = []
    if len(password) < MIN_LENGTH:
        violations.append(Violation.TOO_SHORT)
    for violation, pattern in _RULES:
        if not pattern.search(password):
            violations.append(violation)
    return PolicyResult(violations=violations)


def enforce(password: str) -> None:
    """Raise WeakPassword listing every broken rule, or return quietly."""
    result = validate(password)
    if not result.valid:
        raise WeakPassword(details=result.messages)
