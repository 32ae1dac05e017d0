"""
Password Policy - Structural password rules and strength heuristics

Holds the portal's password policy and the pure functions that evaluate a
candidate password against it: rule validation, a 0-6 strength score,
entropy and a rough time-to-crack display value.

Nothing here touches storage or the network. Every function takes the
policy as an optional argument and falls back to PASSWORD_POLICY.

Usage:
    from rental_portal.utils.password_policy import validate_password, assess_password_strength

    errors = validate_password("hunter2")
    strength = assess_password_strength("Tr1cky!Pass")
    print(strength.feedback)
"""

import hashlib
import math
import re
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

_UPPERCASE = re.compile(r'[A-Z]')
_LOWERCASE = re.compile(r'[a-z]')
_DIGIT = re.compile(r'[0-9]')

GUESSES_PER_SECOND = 1e9


# ==================== Policy ====================

@dataclass(frozen=True)
class PasswordPolicy:
    """Immutable password policy configuration.

    lockout_duration is expressed in minutes.
    """
    min_length: int = 8
    max_length: int = 128
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special_chars: bool = True
    special_chars: str = '!@#$%^&*()_+-=[]{}|;:,.<>?'
    max_repeating_chars: int = 2
    password_history_count: int = 5
    password_expiry_days: int = 90
    lockout_threshold: int = 5
    lockout_duration: int = 5

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> "PasswordPolicy":
        """Build a policy from a config mapping, ignoring unknown keys."""
        if not values:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known})

    def with_overrides(self, **overrides: Any) -> "PasswordPolicy":
        """Return a copy of this policy with the given fields replaced."""
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


PASSWORD_POLICY = PasswordPolicy()


@dataclass
class PasswordStrength:
    """Result of assess_password_strength."""
    score: int
    feedback: str
    checks: Dict[str, bool]
    strength_level: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "feedback": self.feedback,
            "checks": dict(self.checks),
            "strengthLevel": self.strength_level,
        }


# (max score, feedback, level)
_STRENGTH_LEVELS = [
    (2, 'Very Weak', 'very-weak'),
    (3, 'Weak', 'weak'),
    (4, 'Moderate', 'moderate'),
    (5, 'Strong', 'strong'),
]


# ==================== Rule Checks ====================

def _has_special(password: str, policy: PasswordPolicy) -> bool:
    return any(char in policy.special_chars for char in password)


def has_repeating_characters(password: str, max_repeating: int) -> bool:
    """
    Check for runs of identical consecutive characters.

    Args:
        password: The password to check
        max_repeating: Maximum allowed run length

    Returns:
        True if any run is longer than max_repeating
    """
    count = 1
    for previous, current in zip(password, password[1:]):
        if current == previous:
            count += 1
            if count > max_repeating:
                return True
        else:
            count = 1
    return False


def validate_password(password: str, policy: PasswordPolicy = PASSWORD_POLICY) -> List[str]:
    """
    Validate a password against the policy.

    Messages come out in a fixed order: min length, max length, uppercase,
    lowercase, number, special character, repeats.

    Args:
        password: Candidate password
        policy: Policy to validate against

    Returns:
        List of violation messages, empty when the password complies
    """
    errors = []

    if len(password) < policy.min_length:
        errors.append(f"Password must be at least {policy.min_length} characters long")
    if len(password) > policy.max_length:
        errors.append(f"Password must not exceed {policy.max_length} characters")
    if policy.require_uppercase and not _UPPERCASE.search(password):
        errors.append("Password must contain at least one uppercase letter")
    if policy.require_lowercase and not _LOWERCASE.search(password):
        errors.append("Password must contain at least one lowercase letter")
    if policy.require_numbers and not _DIGIT.search(password):
        errors.append("Password must contain at least one number")
    if policy.require_special_chars and not _has_special(password, policy):
        errors.append("Password must contain at least one special character")
    if has_repeating_characters(password, policy.max_repeating_chars):
        errors.append(
            f"Password cannot have more than {policy.max_repeating_chars} consecutive identical characters"
        )

    return errors


def assess_password_strength(password: str, policy: PasswordPolicy = PASSWORD_POLICY) -> PasswordStrength:
    """
    Score a password from 0 to 6, one point per satisfied check.

    Args:
        password: Candidate password
        policy: Policy supplying length bounds, special characters and repeat limit

    Returns:
        PasswordStrength with score, feedback label, individual checks and level
    """
    checks = {
        "length": policy.min_length <= len(password) <= policy.max_length,
        "uppercase": bool(_UPPERCASE.search(password)),
        "lowercase": bool(_LOWERCASE.search(password)),
        "number": bool(_DIGIT.search(password)),
        "special": _has_special(password, policy),
        # An empty password has nothing to repeat but earns no credit either
        "noRepeating": bool(password) and not has_repeating_characters(password, policy.max_repeating_chars),
    }

    score = sum(1 for passed in checks.values() if passed)

    feedback, strength_level = 'Very Strong', 'very-strong'
    for max_score, label, level in _STRENGTH_LEVELS:
        if score <= max_score:
            feedback, strength_level = label, level
            break

    return PasswordStrength(score=score, feedback=feedback, checks=checks, strength_level=strength_level)


def get_password_suggestions(assessment: PasswordStrength, policy: PasswordPolicy = PASSWORD_POLICY) -> List[str]:
    """Turn each failed check into an improvement hint."""
    checks = assessment.checks
    suggestions = []

    if not checks.get("length"):
        suggestions.append(f"Make password {policy.min_length}-{policy.max_length} characters long")
    if not checks.get("uppercase"):
        suggestions.append("Add uppercase letters (A-Z)")
    if not checks.get("lowercase"):
        suggestions.append("Add lowercase letters (a-z)")
    if not checks.get("number"):
        suggestions.append("Add numbers (0-9)")
    if not checks.get("special"):
        suggestions.append("Add special characters (!@#$%^&*...)")
    if not checks.get("noRepeating"):
        suggestions.append("Avoid consecutive repeated characters")

    return suggestions


# ==================== Entropy ====================

def calculate_password_entropy(password: str, policy: PasswordPolicy = PASSWORD_POLICY) -> float:
    """
    Estimate entropy in bits from the character classes the password uses.

    The charset counts only classes present in the password, not the ones
    the policy requires.
    """
    if not password:
        return 0.0

    charset_size = 0
    if _LOWERCASE.search(password):
        charset_size += 26
    if _UPPERCASE.search(password):
        charset_size += 26
    if _DIGIT.search(password):
        charset_size += 10
    if _has_special(password, policy):
        charset_size += len(policy.special_chars)

    if charset_size == 0:
        return 0.0

    return len(password) * math.log2(charset_size)


def get_time_to_crack(password: str, policy: PasswordPolicy = PASSWORD_POLICY) -> str:
    """
    Human readable brute-force estimate at one billion guesses per second.

    Display heuristic only.
    """
    entropy = calculate_password_entropy(password, policy)
    try:
        seconds = math.pow(2, entropy - 1) / GUESSES_PER_SECOND
    except OverflowError:
        return 'Centuries'

    if seconds < 60:
        return 'Less than a minute'
    if seconds < 3600:
        return f"{math.ceil(seconds / 60)} minutes"
    if seconds < 86400:
        return f"{math.ceil(seconds / 3600)} hours"
    if seconds < 31536000:
        return f"{math.ceil(seconds / 86400)} days"
    if seconds < 31536000000:
        return f"{math.ceil(seconds / 31536000)} years"

    return 'Centuries'


# ==================== Expiry ====================

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_password_expired(
    created_at: Optional[datetime],
    policy: PasswordPolicy = PASSWORD_POLICY,
    now: Optional[datetime] = None
) -> bool:
    """True when created_at plus the expiry period lies in the past."""
    if created_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    expires_at = _as_utc(created_at) + timedelta(days=policy.password_expiry_days)
    return _as_utc(now) > expires_at


def get_days_until_expiry(
    created_at: Optional[datetime],
    policy: PasswordPolicy = PASSWORD_POLICY,
    now: Optional[datetime] = None
) -> int:
    """
    Whole days (rounded up) until the password expires.

    Returns:
        Negative when already expired; the full expiry period when
        created_at is unknown
    """
    if created_at is None:
        return policy.password_expiry_days
    now = now or datetime.now(timezone.utc)
    expires_at = _as_utc(created_at) + timedelta(days=policy.password_expiry_days)
    return math.ceil((expires_at - _as_utc(now)).total_seconds() / 86400)


# ==================== History Representation ====================

FINGERPRINT_ITERATIONS = 100_000


def password_fingerprint(email: str, password: str) -> str:
    """
    Reuse marker stored in password history instead of plaintext.

    This is not a password hash and must never be used to verify a login;
    the remote API owns credentials. It only lets the history tell whether
    the same account set the same password before. PBKDF2 salted with the
    account email keeps offline guessing slow and per-account.
    """
    digest = hashlib.pbkdf2_hmac(
        'sha256',
        password.encode('utf-8'),
        f"rental-portal-history:{email}".encode('utf-8'),
        FINGERPRINT_ITERATIONS
    )
    return digest.hex()
