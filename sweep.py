import logging
from datetime import datetime, timezone
from typing import Optional

import config
import store
from notifier import dispatch_alert, format_checkin_time
from status import MS_PER_HOUR, STATUS_ORDER, classify_status, hours_since

logger = logging.getLogger("dead_yet.sweep")


def run_sweep(transport, now: Optional[int] = None, threshold_hours: Optional[float] = None) -> dict:
    """
    Notify the emergency contacts of every user who has been silent for longer than
    the threshold and has not been notified since their last check-in.

    Users without contacts are skipped and keep their flag clear. A user whose
    contacts were emailed is flagged even if some sends failed. Errors for one user
    are reported in the summary; only a failure to list profiles aborts the run.
    """
    now = now if now is not None else store.now_ms()
    threshold_hours = threshold_hours if threshold_hours is not None else config.THRESHOLD_HOURS
    cutoff = now - int(threshold_hours * MS_PER_HOUR)

    overdue = store.list_overdue_profiles(cutoff)
    if not overdue:
        logger.info("Sweep: no inactive users found")
        return {"users_checked": 0, "users_notified": 0, "per_user_results": []}

    logger.info(f"Sweep: found {len(overdue)} inactive user(s)")
    results = []
    notified = 0

    for profile in overdue:
        user_id = profile["user_id"]
        username = profile["username"]
        entry = {"user_id": user_id, "username": username}

        try:
            contacts = store.list_contacts(user_id)
            if not contacts:
                logger.info(f"No emergency contacts for {user_id}: skipping")
                entry.update(status="skipped", reason="no_contacts")
                results.append(entry)
                continue

            email_results = dispatch_alert(
                transport,
                contacts,
                user_name=username,
                last_checkin_display=format_checkin_time(profile["last_checkin"]),
            )
            flagged = store.mark_notified(user_id, profile["last_checkin"])
        except Exception as e:
            logger.exception(f"Sweep failed for {user_id}: {e}")
            entry.update(status="error", reason=str(e))
            results.append(entry)
            continue

        if flagged:
            notified += 1
            entry.update(status="notified", email_results=email_results)
        else:
            # Contacts were emailed but the user checked in meanwhile; flag stays clear
            entry.update(status="notified_checked_in", email_results=email_results)
        results.append(entry)

    logger.info(f"Sweep completed: notified={notified} checked={len(overdue)}")
    return {"users_checked": len(overdue), "users_notified": notified, "per_user_results": results}


def warning_overview(now: Optional[int] = None) -> dict:
    """Status of every user, most urgent first, with per-status counts."""
    now = now if now is not None else store.now_ms()
    users = []
    for profile in store.list_profiles():
        hours = hours_since(profile["last_checkin"], now)
        users.append({
            "user_id": profile["user_id"],
            "username": profile["username"],
            "last_checkin": profile["last_checkin"],
            "hours_since_last_checkin": round(hours, 1) if hours is not None else None,
            "status": classify_status(profile["last_checkin"], now),
            "emergency_contacts_count": store.count_contacts(profile["user_id"]),
            "notification_sent": profile["notification_sent"],
        })

    users.sort(key=lambda u: STATUS_ORDER[u["status"]])
    summary = {"total": len(users)}
    for status in ("safe", "warning", "danger", "never"):
        summary[status] = sum(1 for u in users if u["status"] == status)

    return {
        "summary": summary,
        "users": users,
        "checked_at": datetime.fromtimestamp(now / 1000, tz=timezone.utc).isoformat(),
    }
