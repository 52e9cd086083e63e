"""Environment-driven settings. Values come from the process environment,
optionally seeded from a local .env file."""

import os

from dotenv import load_dotenv

load_dotenv()

API_KEY: str = os.getenv("API_KEY", "pocketmoney-dev-key")

# "memory" keeps everything in-process; "supabase" talks to PostgREST.
STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory").lower()
SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY: str = os.getenv("SUPABASE_KEY", "")
STORE_TIMEOUT_SECONDS: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "15"))

FREE_TIER_MONTHLY_LIMIT: int = int(os.getenv("FREE_TIER_MONTHLY_LIMIT", "50"))

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
