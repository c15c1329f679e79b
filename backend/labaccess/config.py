import os

# purpose: environment-driven settings for the access-control core
# status: active

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./test.db")

SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production-please-32b")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# JSON document replacing the default role permission seed
ACCESS_MATRIX_PATH = os.getenv("ACCESS_MATRIX_PATH")

ACCESS_LOOKUP_TIMEOUT_MS = int(os.getenv("ACCESS_LOOKUP_TIMEOUT_MS", "2000"))
GRANT_EXPIRY_BUFFER_SECONDS = int(os.getenv("GRANT_EXPIRY_BUFFER_SECONDS", "0"))

AUDIT_QUEUE_MAXSIZE = int(os.getenv("AUDIT_QUEUE_MAXSIZE", "1000"))

SENTRY_DSN = os.getenv("SENTRY_DSN")
TESTING = os.getenv("TESTING") == "1"

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
