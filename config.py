from dotenv import load_dotenv
load_dotenv()

import os

# Config
DB_PATH = os.environ.get("DB_PATH", "dead_yet.db")
DB_TIMEOUT_SECONDS = float(os.environ.get("DB_TIMEOUT_SECONDS", "5"))  # busy timeout before a locked database is reported
API_KEY = os.environ.get("API_KEY", "api-key")
RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "")
RESEND_API_URL = os.environ.get("RESEND_API_URL", "https://api.resend.com/emails")
APP_NAME = os.environ.get("APP_NAME", "Dead Yet")
ALERT_FROM_ADDRESS = os.environ.get("ALERT_FROM_ADDRESS", f"{APP_NAME} <onboarding@resend.dev>")
EMAIL_TIMEOUT_SECONDS = float(os.environ.get("EMAIL_TIMEOUT_SECONDS", "10"))
MAX_SEND_WORKERS = int(os.environ.get("MAX_SEND_WORKERS", "8"))
SWEEP_INTERVAL_SECONDS = int(os.environ.get("SWEEP_INTERVAL_SECONDS", "0"))  # 0 disables the in-process trigger
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

WARNING_HOURS = 24  # safe -> warning
THRESHOLD_HOURS = 48  # warning -> danger, and when contacts get notified
HISTORY_LIMIT = 30  # check-in records kept per user
