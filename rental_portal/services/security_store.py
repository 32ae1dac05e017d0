"""
Security State Store - Login attempts, lockouts, password history, session activity

Single authority for the portal's account-security bookkeeping:
- Failed login attempts per email (24 hour sliding window)
- Account lockout after lockout_threshold failures, for lockout_duration minutes
- Password history (most recent first, capped at password_history_count)
- Advisory session activity / timeout status, per login session
- In-memory security event log (newest first, last 100 events)

Persisted under three storage keys as versioned JSON documents:
    loginAttempts    {email: [iso timestamps]}
    accountLockouts  {email: iso timestamp}
    passwordHistory  {email: [representations]}

Storage problems never escape: a corrupt document on load clears all three
keys, and failed writes are logged. Nothing is written back until load()
has completed.

Usage:
    from rental_portal.services.security_store import SecurityStore
    from rental_portal.services.storage import MemoryStorage

    store = SecurityStore(MemoryStorage())
    store.load()
    if store.record_failed_login("user@example.com"):
        print(store.is_account_locked("user@example.com"))
"""

import json
import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from rental_portal.services.storage import KeyValueStorage, StorageError
from rental_portal.utils.password_policy import PASSWORD_POLICY, PasswordPolicy

logger = logging.getLogger(__name__)

LOGIN_ATTEMPTS_KEY = "loginAttempts"
ACCOUNT_LOCKOUTS_KEY = "accountLockouts"
PASSWORD_HISTORY_KEY = "passwordHistory"
STORAGE_KEYS = (LOGIN_ATTEMPTS_KEY, ACCOUNT_LOCKOUTS_KEY, PASSWORD_HISTORY_KEY)

SCHEMA_VERSION = 1

ATTEMPT_WINDOW = timedelta(hours=24)
MAX_SECURITY_EVENTS = 100
DEFAULT_SESSION_TIMEOUT_MS = 30 * 60 * 1000
DEFAULT_WARNING_WINDOW_MS = 5 * 60 * 1000
DEFAULT_USER_AGENT = "rental-portal"
EVENT_ORIGIN = "client-side"


class SecurityStoreNotConfiguredError(RuntimeError):
    """Raised when the store accessor is used before a store was configured."""


class StoredDataError(ValueError):
    """A persisted security document has an unexpected shape."""


# ==================== Timestamps ====================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp. Returns None if it cannot be parsed."""
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + '+00:00' if value.endswith('Z') else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ==================== Records ====================

@dataclass
class LockStatus:
    locked: bool
    remaining_time: Optional[int] = None  # minutes, >= 1 while locked

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"locked": self.locked}
        if self.locked:
            result["remainingTime"] = self.remaining_time
        return result


@dataclass
class SessionStatus:
    active: bool
    warning: bool = False
    expired: bool = False
    remaining_minutes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"active": self.active}
        if self.warning:
            result["warning"] = True
            result["remainingMinutes"] = self.remaining_minutes
        if self.expired:
            result["expired"] = True
        return result


@dataclass
class SessionActivity:
    # session key -> iso timestamp of the last activity seen
    last_activity: Dict[str, str] = field(default_factory=dict)
    session_timeout_ms: int = DEFAULT_SESSION_TIMEOUT_MS
    warning_window_ms: int = DEFAULT_WARNING_WINDOW_MS


@dataclass
class SecurityEvent:
    id: int
    timestamp: str
    event: str
    details: Dict[str, Any] = field(default_factory=dict)
    user_agent: str = DEFAULT_USER_AGENT
    ip: str = EVENT_ORIGIN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "event": self.event,
            "details": self.details,
            "userAgent": self.user_agent,
            "ip": self.ip,
        }


# ==================== Schema Migration ====================

def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


_DOCUMENT_SHAPES: Dict[str, Callable[[Any], bool]] = {
    LOGIN_ATTEMPTS_KEY: _is_string_list,
    ACCOUNT_LOCKOUTS_KEY: lambda value: isinstance(value, str),
    PASSWORD_HISTORY_KEY: _is_string_list,
}


def _migrate_v0(data: Dict[str, Any]) -> Dict[str, Any]:
    # v0 documents are the bare maps written before versioning; content is unchanged
    return data


_MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    0: _migrate_v0,
}


def migrate_document(key: str, document: Any) -> Dict[str, Any]:
    """
    Bring a stored document up to SCHEMA_VERSION and validate its shape.

    Args:
        key: Storage key the document was read from
        document: Decoded JSON document

    Returns:
        The document's data map

    Raises:
        StoredDataError: Unknown version or malformed content
    """
    if not isinstance(document, dict):
        raise StoredDataError(f"{key}: expected a JSON object")

    if "version" in document and "data" in document:
        version = document["version"]
        data = document["data"]
    else:
        version = 0
        data = document

    if not isinstance(version, int) or version < 0 or version > SCHEMA_VERSION:
        raise StoredDataError(f"{key}: unsupported schema version {version!r}")

    while version < SCHEMA_VERSION:
        data = _MIGRATIONS[version](data)
        version += 1

    if not isinstance(data, dict):
        raise StoredDataError(f"{key}: expected a map of accounts")

    is_valid = _DOCUMENT_SHAPES[key]
    for email, value in data.items():
        if not is_valid(value):
            raise StoredDataError(f"{key}: malformed entry for {email!r}")

    return data


# ==================== Store ====================

class SecurityStore:
    """Account-security state, persisted through a KeyValueStorage backend."""

    def __init__(
        self,
        storage: KeyValueStorage,
        policy: PasswordPolicy = PASSWORD_POLICY,
        clock: Callable[[], datetime] = _utcnow,
        user_agent: str = DEFAULT_USER_AGENT,
        session_timeout_ms: int = DEFAULT_SESSION_TIMEOUT_MS,
        warning_window_ms: int = DEFAULT_WARNING_WINDOW_MS
    ):
        self.storage = storage
        self.user_agent = user_agent
        self._settings = policy
        self._clock = clock
        self._lock = threading.RLock()
        self._ready = False

        self._login_attempts: Dict[str, List[str]] = {}
        self._account_lockouts: Dict[str, str] = {}
        self._password_history: Dict[str, List[str]] = {}

        self._session = SessionActivity(
            session_timeout_ms=session_timeout_ms,
            warning_window_ms=warning_window_ms
        )
        self._events: List[SecurityEvent] = []
        self._last_event_id = 0

    # ---------- lifecycle ----------

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now

    @property
    def is_ready(self) -> bool:
        return self._ready

    def load(self) -> None:
        """Read persisted state. Any corrupt document clears all three keys."""
        loaded: Dict[str, Dict[str, Any]] = {}

        try:
            for key in STORAGE_KEYS:
                raw = self.storage.get_item(key)
                if raw:
                    loaded[key] = migrate_document(key, json.loads(raw))
        except (StorageError, ValueError) as e:
            logger.error(f"Error loading security data from storage: {e}")
            loaded = {}
            for key in STORAGE_KEYS:
                try:
                    self.storage.remove_item(key)
                except StorageError as remove_error:
                    logger.error(f"Error clearing corrupted {key}: {remove_error}")

        with self._lock:
            self._login_attempts = loaded.get(LOGIN_ATTEMPTS_KEY, {})
            self._account_lockouts = loaded.get(ACCOUNT_LOCKOUTS_KEY, {})
            self._password_history = loaded.get(PASSWORD_HISTORY_KEY, {})
            self._ready = True

            for key in STORAGE_KEYS:
                self._persist(key)

        logger.info(
            f"Security data loaded: {len(self._login_attempts)} attempt logs, "
            f"{len(self._account_lockouts)} lockouts"
        )

    def _snapshot(self, key: str) -> Dict[str, Any]:
        if key == LOGIN_ATTEMPTS_KEY:
            return self._login_attempts
        if key == ACCOUNT_LOCKOUTS_KEY:
            return self._account_lockouts
        return self._password_history

    def _persist(self, key: str) -> None:
        if not self._ready:
            return
        try:
            payload = json.dumps({"version": SCHEMA_VERSION, "data": self._snapshot(key)})
            self.storage.set_item(key, payload)
        except (StorageError, TypeError, ValueError) as e:
            logger.error(f"Error saving {key} to storage: {e}")

    # ---------- settings ----------

    @property
    def settings(self) -> PasswordPolicy:
        return self._settings

    def update_settings(self, **overrides: Any) -> PasswordPolicy:
        """Override policy values in memory. Overrides are not persisted."""
        with self._lock:
            self._settings = self._settings.with_overrides(**overrides)
            return self._settings

    # ---------- login attempts ----------

    def _recent_attempts(self, email: str, now: datetime) -> List[str]:
        recent = []
        for attempt in self._login_attempts.get(email, []):
            attempt_time = parse_timestamp(attempt)
            if attempt_time is not None and now - attempt_time < ATTEMPT_WINDOW:
                recent.append(attempt)
        return recent

    def record_failed_login(self, email: str) -> bool:
        """
        Record a failed login attempt for email.

        Returns:
            True if this attempt locked the account
        """
        with self._lock:
            now = self._now()
            attempts = self._recent_attempts(email, now)
            attempts.append(format_timestamp(now))
            self._login_attempts[email] = attempts
            self._persist(LOGIN_ATTEMPTS_KEY)

            if len(attempts) >= self._settings.lockout_threshold:
                self.lock_account(email)
                return True

            return False

    def lock_account(self, email: str) -> None:
        """Lock email for lockout_duration minutes, replacing any earlier lockout."""
        with self._lock:
            until = self._now() + timedelta(minutes=self._settings.lockout_duration)
            self._account_lockouts[email] = format_timestamp(until)
            self._persist(ACCOUNT_LOCKOUTS_KEY)

        logger.warning(f"Account locked for {self._settings.lockout_duration} minutes: {email}")

    def is_account_locked(self, email: str) -> LockStatus:
        """
        Check whether email is currently locked out.

        Expired lockouts are removed together with the attempt log; unparsable
        lockout timestamps are removed and treated as unlocked.
        """
        if not self._ready or not email:
            return LockStatus(locked=False)

        with self._lock:
            stored = self._account_lockouts.get(email)
            if not stored:
                return LockStatus(locked=False)

            lockout = parse_timestamp(stored)
            if lockout is None:
                logger.error(f"Discarding unparsable lockout timestamp for {email}: {stored!r}")
                del self._account_lockouts[email]
                self._persist(ACCOUNT_LOCKOUTS_KEY)
                return LockStatus(locked=False)

            now = self._now()
            if now < lockout:
                remaining = math.ceil((lockout - now).total_seconds() / 60)
                return LockStatus(locked=True, remaining_time=max(remaining, 1))

            del self._account_lockouts[email]
            self._persist(ACCOUNT_LOCKOUTS_KEY)
            if self._login_attempts.pop(email, None) is not None:
                self._persist(LOGIN_ATTEMPTS_KEY)
            logger.info(f"Lockout expired for {email}")
            return LockStatus(locked=False)

    def clear_failed_attempts(self, email: str) -> None:
        """Forget attempts and lockout for email (successful authentication)."""
        with self._lock:
            self._login_attempts.pop(email, None)
            self._account_lockouts.pop(email, None)
            self._persist(LOGIN_ATTEMPTS_KEY)
            self._persist(ACCOUNT_LOCKOUTS_KEY)

    def get_remaining_attempts(self, email: str) -> int:
        """Failed attempts left before lockout within the 24 hour window."""
        threshold = self._settings.lockout_threshold
        if not self._ready or not email:
            return threshold

        with self._lock:
            stored = self._login_attempts.get(email)
            if stored is None:
                return threshold

            recent = self._recent_attempts(email, self._now())
            if len(recent) != len(stored):
                if recent:
                    self._login_attempts[email] = recent
                else:
                    del self._login_attempts[email]
                self._persist(LOGIN_ATTEMPTS_KEY)

            return max(0, threshold - len(recent))

    # ---------- password history ----------

    def add_password_to_history(self, email: str, representation: str) -> None:
        with self._lock:
            history = [representation] + self._password_history.get(email, [])
            self._password_history[email] = history[:self._settings.password_history_count]
            self._persist(PASSWORD_HISTORY_KEY)

    def is_password_in_history(self, email: str, representation: str) -> bool:
        with self._lock:
            return representation in self._password_history.get(email, [])

    def get_password_history(self, email: str) -> List[str]:
        with self._lock:
            return list(self._password_history.get(email, []))

    # ---------- session activity ----------

    @property
    def session_activity(self) -> SessionActivity:
        return self._session

    def update_activity(self, session_key: str) -> None:
        """Mark activity for one login session."""
        with self._lock:
            self._session.last_activity[session_key] = format_timestamp(self._now())

    def end_session(self, session_key: Optional[str]) -> None:
        if session_key:
            with self._lock:
                self._session.last_activity.pop(session_key, None)

    def get_session_status(self, session_key: Optional[str]) -> SessionStatus:
        if not session_key:
            return SessionStatus(active=False)
        with self._lock:
            last_activity = parse_timestamp(self._session.last_activity.get(session_key))
        return self._status_since(last_activity)

    def expiring_sessions(self) -> Dict[str, SessionStatus]:
        """
        Sessions inside the warning window.

        Sessions past their timeout are dropped as a side effect.
        """
        warnings = {}
        with self._lock:
            for key, stamp in list(self._session.last_activity.items()):
                status = self._status_since(parse_timestamp(stamp))
                if status.expired or not status.active:
                    del self._session.last_activity[key]
                elif status.warning:
                    warnings[key] = status
        return warnings

    def _status_since(self, last_activity: Optional[datetime]) -> SessionStatus:
        if last_activity is None:
            return SessionStatus(active=False)

        elapsed_ms = (self._now() - last_activity).total_seconds() * 1000
        timeout_ms = self._session.session_timeout_ms

        if elapsed_ms > timeout_ms:
            return SessionStatus(active=False, expired=True)

        if elapsed_ms > timeout_ms - self._session.warning_window_ms:
            remaining_ms = timeout_ms - elapsed_ms
            return SessionStatus(
                active=True,
                warning=True,
                remaining_minutes=math.ceil(remaining_ms / 60000)
            )

        return SessionStatus(active=True)

    # ---------- security events ----------

    @property
    def security_events(self) -> List[SecurityEvent]:
        return list(self._events)

    def log_security_event(
        self,
        event: str,
        details: Optional[Dict[str, Any]] = None,
        user_agent: Optional[str] = None
    ) -> SecurityEvent:
        """Prepend a diagnostic event, keeping the most recent 100."""
        with self._lock:
            now = self._now()
            # Millisecond timestamp, bumped when two events land in the same millisecond
            event_id = max(int(now.timestamp() * 1000), self._last_event_id + 1)
            self._last_event_id = event_id

            record = SecurityEvent(
                id=event_id,
                timestamp=format_timestamp(now),
                event=event,
                details=dict(details or {}),
                user_agent=user_agent or self.user_agent,
            )
            self._events = [record] + self._events[:MAX_SECURITY_EVENTS - 1]

        logger.info(f"Security event {event}", extra={"security_event": event})
        return record

    # ---------- diagnostics ----------

    def debug_state(self) -> Dict[str, Any]:
        """Snapshot of in-memory and stored state for troubleshooting."""
        stored = {}
        for key in STORAGE_KEYS:
            try:
                stored[key] = self.storage.get_item(key)
            except StorageError as e:
                stored[key] = f"<unreadable: {e}>"

        with self._lock:
            return {
                "isLoaded": self._ready,
                "loginAttempts": {k: list(v) for k, v in self._login_attempts.items()},
                "accountLockouts": dict(self._account_lockouts),
                "storage": stored,
            }


# ==================== Process-wide Accessor ====================

_store: Optional[SecurityStore] = None


def configure_security_store(store: SecurityStore) -> SecurityStore:
    """Install the process-wide store (called once at application start)."""
    global _store
    _store = store
    return store


def get_security_store() -> SecurityStore:
    """Return the configured store. Raises if none was configured."""
    if _store is None:
        raise SecurityStoreNotConfiguredError(
            "get_security_store() called before configure_security_store()"
        )
    return _store


def reset_security_store() -> None:
    global _store
    _store = None
