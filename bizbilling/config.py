import os


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- PayPal ---
    PAYPAL_CLIENT_ID = os.environ.get("PAYPAL_CLIENT_ID")
    PAYPAL_CLIENT_SECRET = os.environ.get("PAYPAL_CLIENT_SECRET")
    PAYPAL_WEBHOOK_ID = os.environ.get("PAYPAL_WEBHOOK_ID")
    PAYPAL_BASE_URL = os.environ.get("PAYPAL_BASE_URL", "https://api-m.paypal.com")
    PAYPAL_HTTP_TIMEOUT = float(os.environ.get("PAYPAL_HTTP_TIMEOUT", 15))

    # "enforce" rejects events whose signature does not verify.
    # "bypass" processes them anyway and records the override on the event.
    PAYPAL_WEBHOOK_SIGNATURE_POLICY = os.environ.get(
        "PAYPAL_WEBHOOK_SIGNATURE_POLICY", "enforce"
    ).lower()

    # --- Webhook processing ---
    WEBHOOK_CLAIM_TIMEOUT = int(os.environ.get("WEBHOOK_CLAIM_TIMEOUT", 300))  # seconds
    WEBHOOK_RATE_LIMIT = os.environ.get("WEBHOOK_RATE_LIMIT", "300 per minute")
    FAILED_PAYMENT_THRESHOLD = int(os.environ.get("FAILED_PAYMENT_THRESHOLD", 3))

    # --- Pricing (PHP) ---
    ACTIVATION_CURRENCY = os.environ.get("ACTIVATION_CURRENCY", "PHP")
    PLAN_PRICES = {"starter": 199, "pro": 499}
    # One-off USD payments are converted before matching price bands.
    USD_TO_PHP_RATE = float(os.environ.get("USD_TO_PHP_RATE", 56))

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "PAYPAL_CLIENT_ID",
            "PAYPAL_CLIENT_SECRET",
            "PAYPAL_WEBHOOK_ID",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
        policy = os.environ.get("PAYPAL_WEBHOOK_SIGNATURE_POLICY", "enforce").lower()
        if policy not in ("enforce", "bypass"):
            raise RuntimeError(
                f"PAYPAL_WEBHOOK_SIGNATURE_POLICY must be 'enforce' or 'bypass', got {policy!r}"
            )


class DevConfig(Config):
    """Local development against the PayPal sandbox."""

    DEBUG = True
    PAYPAL_BASE_URL = os.environ.get(
        "PAYPAL_BASE_URL", "https://api-m.sandbox.paypal.com"
    )


class TestConfig(Config):
    """Testing — in-memory SQLite, fake PayPal credentials."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    PAYPAL_CLIENT_ID = "paypal-client-test"
    PAYPAL_CLIENT_SECRET = "paypal-secret-test"
    PAYPAL_WEBHOOK_ID = "WH-TEST-0001"
    PAYPAL_BASE_URL = "https://api-m.sandbox.paypal.test"
    PAYPAL_WEBHOOK_SIGNATURE_POLICY = "enforce"
    WEBHOOK_CLAIM_TIMEOUT = 300
    FAILED_PAYMENT_THRESHOLD = 3
    ACTIVATION_CURRENCY = "PHP"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
