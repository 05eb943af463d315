# backend/settings.py
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL is not set in .env file")

SESSION_SECRET = os.getenv("SESSION_SECRET")
if not SESSION_SECRET:
    raise ValueError("SESSION_SECRET is not set in .env file!")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_PICKER_API_KEY = os.getenv("GOOGLE_PICKER_API_KEY", "")
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

GOOGLE_SCOPES = [
    "openid",
    "email",
    "profile",
    "https://www.googleapis.com/auth/drive.file",
]

CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")
PUBLIC_DIR = os.getenv("PUBLIC_DIR", "public")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Bumped whenever the token payload changes so stale cookies are ignored.
SESSION_COOKIE_NAME = "fileuploader.session-token.v2"
SESSION_TTL_DAYS = 30
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() == "true"
