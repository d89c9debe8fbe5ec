import os

# =========================
# CONFIG
# =========================

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
DB_SSLMODE = (os.getenv("DB_SSLMODE", "prefer") or "prefer").strip()

# Webhook mode when set (example: https://xxxx.up.railway.app), long polling otherwise
PUBLIC_URL = os.getenv("PUBLIC_URL", "").strip()
PORT = int(os.getenv("PORT", "8080"))

# Single currency; the label is only used for display
CURRENCY_LABEL = (os.getenv("CURRENCY_LABEL", "руб.") or "руб.").strip()

LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()


def normalize_url(u: str) -> str:
    u = (u or "").strip().rstrip("/")
    if not u:
        return ""
    if not u.startswith("https://"):
        u = "https://" + u
    return u
