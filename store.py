import re
import time
import uuid
import sqlite3
import logging
from datetime import datetime, timezone
from typing import List, Optional

import config
from errors import InvalidInput, NotFound, UpstreamUnavailable

logger = logging.getLogger("dead_yet.store")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_UNSET = object()


def now_ms() -> int:
    return int(time.time() * 1000)


def checkin_date(ts: int) -> str:
    """Calendar day of a check-in, always in UTC."""
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


# DB helpers
class _Cursor(sqlite3.Cursor):
    def execute(self, *args):
        try:
            return super().execute(*args)
        except sqlite3.OperationalError as e:
            raise UpstreamUnavailable(f"database error: {e}") from e


class _Connection(sqlite3.Connection):
    """Reports locked or unusable databases as UpstreamUnavailable."""

    def cursor(self, factory=_Cursor):
        return super().cursor(factory)

    def commit(self):
        try:
            super().commit()
        except sqlite3.OperationalError as e:
            raise UpstreamUnavailable(f"database error: {e}") from e


def get_conn():
    try:
        return sqlite3.connect(config.DB_PATH, timeout=config.DB_TIMEOUT_SECONDS,
                               check_same_thread=False, factory=_Connection)
    except sqlite3.Error as e:
        raise UpstreamUnavailable(f"cannot open database at {config.DB_PATH}: {e}") from e


def init_db():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
    CREATE TABLE IF NOT EXISTS profiles (
        user_id TEXT PRIMARY KEY,
        username TEXT DEFAULT NULL,
        last_checkin INTEGER DEFAULT NULL,
        notification_sent INTEGER DEFAULT 0,
        created_at INTEGER DEFAULT 0
    )
    """)
    c.execute("""
    CREATE TABLE IF NOT EXISTS checkins (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        date TEXT NOT NULL,
        timestamp INTEGER NOT NULL,
        UNIQUE (user_id, date)
    )
    """)
    c.execute("""
    CREATE TABLE IF NOT EXISTS emergency_contacts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        created_at INTEGER DEFAULT 0
    )
    """)
    c.execute("CREATE INDEX IF NOT EXISTS idx_checkins_user ON checkins (user_id, timestamp)")
    c.execute("CREATE INDEX IF NOT EXISTS idx_contacts_user ON emergency_contacts (user_id)")
    conn.commit()
    conn.close()
    logger.info(f"Database ready at {config.DB_PATH}")


def _profile_from_row(row) -> dict:
    user_id, username, last_checkin, notification_sent, created_at = row
    return {
        "user_id": user_id,
        "username": username,
        "last_checkin": last_checkin,
        "notification_sent": bool(notification_sent),
        "created_at": created_at,
    }


_PROFILE_COLUMNS = "user_id, username, last_checkin, notification_sent, created_at"


# Profiles
def create_profile(user_id: str, username: Optional[str] = None, now: Optional[int] = None) -> dict:
    now = now if now is not None else now_ms()
    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute("""
        INSERT INTO profiles (user_id, username, last_checkin, notification_sent, created_at)
        VALUES (?, ?, NULL, 0, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            username = COALESCE(excluded.username, profiles.username)
        """, (user_id, username, now))
        conn.commit()
    finally:
        conn.close()
    logger.info(f"Registered profile {user_id} (username={username!r})")
    return get_profile(user_id)


def get_profile(user_id: str) -> dict:
    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute(f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE user_id = ?", (user_id,))
        row = c.fetchone()
    finally:
        conn.close()
    if not row:
        raise NotFound(f"no profile for user {user_id}")
    return _profile_from_row(row)


def update_profile(user_id: str, last_checkin=_UNSET, notification_sent=_UNSET) -> dict:
    assignments = []
    params = []
    if last_checkin is not _UNSET:
        assignments.append("last_checkin = ?")
        params.append(last_checkin)
    if notification_sent is not _UNSET:
        assignments.append("notification_sent = ?")
        params.append(1 if notification_sent else 0)
    if not assignments:
        return get_profile(user_id)

    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute(f"UPDATE profiles SET {', '.join(assignments)} WHERE user_id = ?", (*params, user_id))
        updated = c.rowcount
        conn.commit()
    finally:
        conn.close()
    if updated == 0:
        raise NotFound(f"no profile for user {user_id}")
    return get_profile(user_id)


def list_profiles() -> List[dict]:
    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute(f"SELECT {_PROFILE_COLUMNS} FROM profiles")
        rows = c.fetchall()
    finally:
        conn.close()
    return [_profile_from_row(r) for r in rows]


def list_overdue_profiles(cutoff: int) -> List[dict]:
    """Profiles whose last check-in is older than cutoff and who have not been notified yet."""
    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute(f"""
            SELECT {_PROFILE_COLUMNS} FROM profiles
            WHERE last_checkin IS NOT NULL AND last_checkin < ? AND notification_sent = 0
            ORDER BY last_checkin
        """, (cutoff,))
        rows = c.fetchall()
    finally:
        conn.close()
    return [_profile_from_row(r) for r in rows]


def mark_notified(user_id: str, last_checkin: int) -> bool:
    # Only flag the user if nobody checked in since the sweep read the profile
    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute("""
            UPDATE profiles SET notification_sent = 1
            WHERE user_id = ? AND last_checkin = ?
        """, (user_id, last_checkin))
        updated = c.rowcount
        conn.commit()
    finally:
        conn.close()
    if updated == 0:
        logger.info(f"{user_id} checked in while being notified: leaving notification flag clear")
    return updated > 0


# Check-ins
def record_checkin(user_id: str, date: str, timestamp: int) -> dict:
    """
    Store a check-in and reset the user's notification flag.
    A second check-in on the same day replaces that day's record, and only the
    most recent HISTORY_LIMIT records are kept.
    """
    record = {"id": str(uuid.uuid4()), "date": date, "timestamp": timestamp}
    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute("DELETE FROM checkins WHERE user_id = ? AND date = ?", (user_id, date))
        c.execute(
            "INSERT INTO checkins (id, user_id, date, timestamp) VALUES (?, ?, ?, ?)",
            (record["id"], user_id, date, timestamp)
        )
        c.execute("""
            DELETE FROM checkins WHERE user_id = ? AND id NOT IN (
                SELECT id FROM checkins WHERE user_id = ?
                ORDER BY timestamp DESC LIMIT ?
            )
        """, (user_id, user_id, config.HISTORY_LIMIT))
        pruned = c.rowcount

        c.execute("""
        INSERT INTO profiles (user_id, username, last_checkin, notification_sent, created_at)
        VALUES (?, NULL, ?, 0, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            last_checkin = excluded.last_checkin,
            notification_sent = 0
        """, (user_id, timestamp, timestamp))
        conn.commit()
    finally:
        conn.close()

    if pruned > 0:
        logger.debug(f"Pruned {pruned} old check-in(s) for {user_id}")
    return record


def get_recent_checkins(user_id: str, limit: int = config.HISTORY_LIMIT) -> List[dict]:
    limit = max(0, min(limit, config.HISTORY_LIMIT))
    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute("""
            SELECT id, date, timestamp FROM checkins
            WHERE user_id = ?
            ORDER BY timestamp DESC LIMIT ?
        """, (user_id, limit))
        rows = c.fetchall()
    finally:
        conn.close()
    return [{"id": r[0], "date": r[1], "timestamp": r[2]} for r in rows]


# Emergency contacts
def list_contacts(user_id: str) -> List[dict]:
    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute("SELECT id, name, email FROM emergency_contacts WHERE user_id = ?", (user_id,))
        rows = c.fetchall()
    finally:
        conn.close()
    return [{"id": r[0], "name": r[1], "email": r[2]} for r in rows]


def count_contacts(user_id: str) -> int:
    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute("SELECT COUNT(*) FROM emergency_contacts WHERE user_id = ?", (user_id,))
        (count,) = c.fetchone()
    finally:
        conn.close()
    return count


def validate_email(email: str) -> str:
    email = (email or "").strip()
    if not EMAIL_RE.match(email):
        raise InvalidInput(f"malformed email address: {email!r}")
    return email


def add_contact(user_id: str, name: str, email: str) -> dict:
    name = (name or "").strip()
    if not name:
        raise InvalidInput("contact name must not be empty")
    email = validate_email(email)
    get_profile(user_id)

    contact = {"id": str(uuid.uuid4()), "name": name, "email": email}
    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute(
            "INSERT INTO emergency_contacts (id, user_id, name, email, created_at) VALUES (?, ?, ?, ?, ?)",
            (contact["id"], user_id, name, email, now_ms())
        )
        conn.commit()
    finally:
        conn.close()
    logger.info(f"Added emergency contact {contact['id']} for {user_id}")
    return contact


def remove_contact(user_id: str, contact_id: str):
    conn = get_conn()
    try:
        c = conn.cursor()
        c.execute("DELETE FROM emergency_contacts WHERE user_id = ? AND id = ?", (user_id, contact_id))
        deleted = c.rowcount
        conn.commit()
    finally:
        conn.close()
    if deleted == 0:
        raise NotFound(f"no contact {contact_id} for user {user_id}")
    logger.info(f"Removed emergency contact {contact_id} from {user_id}")
