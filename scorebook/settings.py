import os
from dotenv import load_dotenv

# .env next to the project root wins over nothing, never over real env vars
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

# "postgres" or "memory". Memory is the fallback when no database is configured.
STORE_BACKEND = os.getenv("SCOREBOOK_STORE", "postgres" if DATABASE_URL else "memory").lower()

DB_POOL_MIN_SIZE = int(os.getenv("DB_POOL_MIN_SIZE", "1"))
DB_POOL_MAX_SIZE = int(os.getenv("DB_POOL_MAX_SIZE", "10"))

# Upper bound (seconds) for any single store call
STORE_TIMEOUT = float(os.getenv("SCOREBOOK_STORE_TIMEOUT", "5"))

CORS_ORIGINS = [o.strip() for o in os.getenv("SCOREBOOK_CORS_ORIGINS", "*").split(",") if o.strip()]

BALLS_PER_OVER = 6
MAX_WICKETS = 10
