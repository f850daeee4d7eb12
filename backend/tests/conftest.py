import os

# Settings are read at import time by pulse.core.db / celery_app
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("ENV", "dev")
