import html
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List, Optional

import requests

import config
from errors import InvalidInput, UpstreamUnavailable

logger = logging.getLogger("dead_yet.notifier")

DEFAULT_USER_NAME = "User"


class ResendTransport:
    """Sends one HTML email per call through the Resend HTTP API."""

    def __init__(self, api_key: str, sender: str, timeout: float = 10, url: str = config.RESEND_API_URL):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.url = url

    def send(self, to: str, subject: str, body: str) -> dict:
        try:
            resp = requests.post(
                self.url,
                json={"from": self.sender, "to": [to], "subject": subject, "html": body},
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"email provider unreachable: {e}") from e

        if resp.status_code >= 500:
            raise UpstreamUnavailable(f"email provider error: {resp.status_code} {resp.text}")
        if resp.status_code >= 400:
            raise InvalidInput(f"email rejected: {resp.status_code} {resp.text}")
        return resp.json()


def format_checkin_time(ts: Optional[int]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def render_alert(contact_name: str, user_name: str, last_checkin_display: Optional[str] = None):
    """Build the (subject, html) pair of the missed check-in alert sent to one contact."""
    app_name = html.escape(config.APP_NAME)
    user = html.escape(user_name)
    contact = html.escape(contact_name)
    hours = config.THRESHOLD_HOURS

    subject = f"⚠️ Urgent: {user_name} has not checked in for over {hours} hours"

    last_seen = ""
    if last_checkin_display:
        last_seen = (
            '<p style="margin: 15px 0 0; color: #a0a0a0; font-size: 14px;">'
            f"Last check-in: {html.escape(last_checkin_display)}</p>"
        )

    body = f"""
    <div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; background: #1a1a2e; color: #fff;">
      <div style="text-align: center; padding: 20px 0; border-bottom: 2px solid #ff6b6b;">
        <h1 style="color: #ff6b6b; margin: 0; font-size: 28px;">⚠️ Urgent notice</h1>
      </div>
      <div style="padding: 30px 20px;">
        <p style="font-size: 16px; color: #e0e0e0;">Hello {contact},</p>
        <div style="background: #ff6b6b20; padding: 25px; border-radius: 12px; margin: 25px 0; border-left: 4px solid #ff6b6b;">
          <p style="margin: 0; font-size: 18px; color: #ff6b6b; font-weight: bold;">
            {user} has not checked in to {app_name} for more than {hours} hours.
          </p>
          {last_seen}
        </div>
        <p style="font-size: 15px; color: #b0b0b0; line-height: 1.8;">
          You are listed as an emergency contact for {user}.
          Please reach out to {user} by other means and make sure they are safe.
        </p>
        <p style="margin: 25px 0 0; color: #8888aa; font-size: 13px;">
          This message was sent automatically by the {app_name} check-in service.
        </p>
      </div>
    </div>
    """
    return subject, body


def dispatch_alert(transport, contacts: List[dict], user_name: Optional[str] = None,
                   last_checkin_display: Optional[str] = None) -> dict:
    """
    contacts: list of {"name": ..., "email": ...}
    Sends one alert per contact concurrently and waits for all of them. A failed send
    is recorded in the result and never stops the other sends.
    """
    if not contacts:
        raise InvalidInput("No contacts provided")

    user_name = user_name or DEFAULT_USER_NAME
    logger.info(f"Dispatching alert for '{user_name}' to {len(contacts)} contact(s)")

    def send_one(contact: dict) -> dict:
        name = contact.get("name", "")
        email = contact.get("email")
        try:
            subject, body = render_alert(name, user_name, last_checkin_display)
            receipt = transport.send(email, subject, body)
            logger.info(f"EMAIL SEND SUCCESS -> to={email}, user='{user_name}', receipt={receipt}")
            return {"name": name, "email": email, "status": "sent", "response": receipt}
        except (InvalidInput, UpstreamUnavailable) as e:
            logger.warning(f"EMAIL SEND FAILED -> to={email}, user='{user_name}', error={e}")
            return {"name": name, "email": email, "status": "failed", "error": str(e)}
        except Exception as e:
            logger.exception(f"EMAIL SEND FAILED -> to={email}, user='{user_name}', error={e}")
            return {"name": name, "email": email, "status": "failed", "error": str(e)}

    workers = max(1, min(len(contacts), config.MAX_SEND_WORKERS))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        per_contact = list(pool.map(send_one, contacts))

    success = sum(1 for r in per_contact if r["status"] == "sent")
    failure = len(per_contact) - success
    logger.info(f"Email send summary for '{user_name}': success={success} failure={failure}")
    return {
        "success": success,
        "failure": failure,
        "partial_failure": success > 0 and failure > 0,
        "per_contact": per_contact,
    }
