"""Password rules and strength scoring. Pure functions, no I/O."""

from __future__ import annotations

from typing import List, Optional

from argofile.config import PASSWORD_MAX_LENGTH, PASSWORD_MIN_LENGTH

MIN_LENGTH = PASSWORD_MIN_LENGTH
MAX_LENGTH = PASSWORD_MAX_LENGTH


def validate(password: Optional[str]) -> List[str]:
    """Return every rule ``password`` violates; empty list means acceptable."""
    if not password:
        return ["Password is required."]

    errors = []
    if len(password) < MIN_LENGTH:
        errors.append(f"Password must be at least {MIN_LENGTH} characters long.")
    if len(password) > MAX_LENGTH:
        errors.append(f"Password must be no more than {MAX_LENGTH} characters long.")
    if not any(c.isalpha() for c in password):
        errors.append("Password must contain at least one letter.")
    if not any(c.isdigit() for c in password):
        errors.append("Password must contain at least one number.")
    return errors


def is_valid(password: Optional[str]) -> bool:
    return not validate(password)


def first_error(password: Optional[str]) -> Optional[str]:
    errors = validate(password)
    return errors[0] if errors else None


def _has_repeated_run(password: str) -> bool:
    for i in range(len(password) - 2):
        if password[i] == password[i + 1] == password[i + 2]:
            return True
    return False


def _has_sequential_run(password: str) -> bool:
    lowered = password.lower()
    for i in range(len(lowered) - 2):
        a, b, c = (ord(ch) for ch in lowered[i:i + 3])
        # ascending (abc, 123) or descending (cba, 321)
        if b == a + 1 and c == b + 1:
            return True
        if b == a - 1 and c == b - 1:
            return True
    return False


def strength_score(password: Optional[str]) -> int:
    """
    Score ``password`` from 0 (weak) to 100 (strong).

    Up to 30 points for length, then 10/15/15/20 for lowercase, uppercase,
    digits and symbols. Runs of three identical characters and three-long
    ascending/descending sequences cost 10 points each.
    """
    if not password:
        return 0

    score = min(len(password) * 2, 30)
    if any(c.islower() for c in password):
        score += 10
    if any(c.isupper() for c in password):
        score += 15
    if any(c.isdigit() for c in password):
        score += 15
    if any(not c.isalnum() for c in password):
        score += 20

    if _has_repeated_run(password):
        score -= 10
    if _has_sequential_run(password):
        score -= 10

    return max(0, min(score, 100))


def strength_label(score: int) -> str:
    if score < 20:
        return "Very Weak"
    if score < 40:
        return "Weak"
    if score < 60:
        return "Fair"
    if score < 80:
        return "Strong"
    return "Very Strong"
