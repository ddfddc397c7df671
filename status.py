from typing import Optional

import config

MS_PER_HOUR = 60 * 60 * 1000

STATUS_ORDER = {"danger": 0, "warning": 1, "safe": 2, "never": 3}


def hours_since(last_checkin: Optional[int], now: int) -> Optional[float]:
    if last_checkin is None:
        return None
    return (now - last_checkin) / MS_PER_HOUR


def classify_status(last_checkin: Optional[int], now: int) -> str:
    """
    Map a last check-in (epoch ms) to never / safe / warning / danger.
    Thresholds are exclusive upper bounds: exactly 24h is warning, exactly 48h is danger.
    """
    hours = hours_since(last_checkin, now)
    if hours is None:
        return "never"
    if hours < config.WARNING_HOURS:
        return "safe"
    if hours < config.THRESHOLD_HOURS:
        return "warning"
    return "danger"
