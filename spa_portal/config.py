import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# Supabase project (PostgREST, GoTrue and Realtime share the same base URL)
SUPABASE_URL = os.getenv("SUPABASE_URL", "").rstrip("/")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")
# Service role key bypasses row level security - server side only
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")
BAAS_TIMEOUT = float(os.getenv("BAAS_TIMEOUT", "10"))

# Realtime change feed
REALTIME_HEARTBEAT_SECONDS = float(os.getenv("REALTIME_HEARTBEAT_SECONDS", "25"))

# Business calendar - "today" for schedules and earnings is evaluated here
SPA_TIMEZONE = os.getenv("SPA_TIMEZONE", "Asia/Manila")

# Profile lookup during session resolution: retries after the first attempt
PROFILE_FETCH_RETRIES = int(os.getenv("PROFILE_FETCH_RETRIES", "2"))
PROFILE_RETRY_DELAY = float(os.getenv("PROFILE_RETRY_DELAY", "1.0"))

# Frontend base URL
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Golden Tower Spa <system@goldentowerspa.com>")
ERROR_ALERT_RECIPIENTS = [
    addr.strip()
    for addr in os.getenv("ERROR_ALERT_RECIPIENTS", "gtowerspa@gmail.com").split(",")
    if addr.strip()
]
# Identical error messages inside this window only alert once
ERROR_ALERT_DEDUP_SECONDS = int(os.getenv("ERROR_ALERT_DEDUP_SECONDS", "3600"))

# Redis (rate limiting)
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# CORS
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", FRONTEND_URL).split(",")
    if origin.strip()
]
