# backend/config.py
import os
from dotenv import load_dotenv

load_dotenv()

SESSION_SECRET = os.getenv("SESSION_SECRET")
if not SESSION_SECRET:
    raise ValueError("SESSION_SECRET must be set in .env file!")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
if not GOOGLE_CLIENT_ID:
    raise ValueError("GOOGLE_CLIENT_ID must be set in .env file!")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")

GOOGLE_GEMINI_API_KEY = os.getenv("GOOGLE_GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-exp")
AI_MAX_RETRIES = int(os.getenv("AI_MAX_RETRIES", "2"))

MAX_DAILY_REQUESTS = int(os.getenv("MAX_DAILY_REQUESTS", "20"))

SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", "7"))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "tutor_token")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/app.db")

CLIENT_URL = os.getenv("CLIENT_URL", "*")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION = ENVIRONMENT == "production"
DISABLE_DEV_LOGIN = os.getenv("DISABLE_DEV_LOGIN", "false").lower() == "true"
DEV_ROUTES_ENABLED = not IS_PRODUCTION

PING_MESSAGE = os.getenv("PING_MESSAGE", "ping")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
