import os

# Load .env.test for local overrides (e.g. a Postgres DATABASE_URL)
from dotenv import load_dotenv

env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

# Defaults must be in place before any application module builds settings or engines.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_checkout")
os.environ.setdefault("FLUTTERWAVE_SECRET_KEY", "FLWSECK_TEST-checkout")

from libs.common.config import get_settings  # noqa: E402

# Clear cached settings to reload with the test env vars
get_settings.cache_clear()
