import os

os.environ.setdefault("EXPENSES_CSRF_SECRET", "test-only-secret")
os.environ.setdefault("EXPENSES_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("EXPENSES_SCHEDULER_ENABLED", "false")
os.environ.setdefault("EXPENSES_TIMEZONE", "UTC")
