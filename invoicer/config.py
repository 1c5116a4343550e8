import os

def _get_env(key, default=None):
    return os.getenv(key, default)

class Config:
    SECRET_KEY = _get_env("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = _get_env("DATABASE_URL", "sqlite:///invoicer.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    REDIS_URL = _get_env("REDIS_URL", "redis://localhost:6379/0")
    LOG_LEVEL = _get_env("LOG_LEVEL", "info")
    CORS_ORIGINS = _get_env("CORS_ORIGINS", "http://localhost:3000").split(",")

    MAX_CONTENT_LENGTH = int(float(_get_env("MAX_UPLOAD_MB", "10")) * 1024 * 1024)

    # Credits
    FREE_CREDITS = int(_get_env("FREE_CREDITS", "5"))
    CREDIT_PRICE = int(_get_env("CREDIT_PRICE", "10"))  # KES per credit
    ERROR_LOG_LIMIT = int(_get_env("ERROR_LOG_LIMIT", "50"))

    # Payments
    PAYMENT_GATEWAY = _get_env("PAYMENT_GATEWAY", "simulated")  # simulated|daraja
    PAYMENT_POLL_INTERVAL = float(_get_env("PAYMENT_POLL_INTERVAL", "10"))
    PAYMENT_MAX_ATTEMPTS = int(_get_env("PAYMENT_MAX_ATTEMPTS", "30"))
    PAYMENT_POLL_QUEUE = _get_env("PAYMENT_POLL_QUEUE", "payments:polls")
    SIMULATED_SUCCESS_AFTER = int(_get_env("SIMULATED_SUCCESS_AFTER", "3"))
    MPESA_BASE_URL = _get_env("MPESA_BASE_URL", "https://sandbox.safaricom.co.ke")
    MPESA_CONSUMER_KEY = _get_env("MPESA_CONSUMER_KEY", "")
    MPESA_CONSUMER_SECRET = _get_env("MPESA_CONSUMER_SECRET", "")
    MPESA_SHORTCODE = _get_env("MPESA_SHORTCODE", "174379")
    MPESA_PASSKEY = _get_env("MPESA_PASSKEY", "")
    MPESA_CALLBACK_URL = _get_env("MPESA_CALLBACK_URL", "https://example.com/mpesa/callback")
    MPESA_TIMEOUT = float(_get_env("MPESA_TIMEOUT", "30"))

    # OCR proxy and field extraction
    OCR_SERVICE_URL = _get_env("OCR_SERVICE_URL", "http://localhost:5000")
    OCR_TIMEOUT = float(_get_env("OCR_TIMEOUT", "60"))
    ANTHROPIC_API_KEY = _get_env("ANTHROPIC_API_KEY", "")
    EXTRACTION_MODEL = _get_env("EXTRACTION_MODEL", "claude-3-5-haiku-latest")
    EXTRACTION_MAX_TOKENS = int(_get_env("EXTRACTION_MAX_TOKENS", "1024"))
