import os

# the API module reads these once at import time
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("WEBHOOK_SIGNING_KEY", "test-signing-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
