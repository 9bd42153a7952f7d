import os
from dotenv import load_dotenv

load_dotenv()


class ConfigurationError(Exception):
    """Raised when a required environment variable is missing."""


QUICKBOOKS_CLIENT_ID = os.getenv("QUICKBOOKS_CLIENT_ID")
QUICKBOOKS_CLIENT_SECRET = os.getenv("QUICKBOOKS_CLIENT_SECRET")
QUICKBOOKS_REDIRECT_URI = os.getenv("QUICKBOOKS_REDIRECT_URI")
QUICKBOOKS_ENVIRONMENT = os.getenv("QUICKBOOKS_ENVIRONMENT", "sandbox")
QUICKBOOKS_ENCRYPTION_KEY = os.getenv("QUICKBOOKS_ENCRYPTION_KEY")

DATABASE_URL = os.getenv("DATABASE_URL")
SUPABASE_DB_PASS = os.getenv("SUPABASE_DB_PASS")
SUPABASE_DB_HOST = os.getenv("SUPABASE_DB_HOST")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4")

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
    ).split(",")
    if o.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
INVOICE_TAX_RATE = float(os.getenv("INVOICE_TAX_RATE", "0.08"))


def require(name: str) -> str:
    """Return the env value for ``name`` or fail loudly at first use."""
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(f"{name} environment variable is required")
    return value
