"""
Django settings for the application.

This is the single settings file for all environments. Configuration is driven
by environment variables using django-environ, following the 12-factor app
methodology.

Environment files:
    - .env.development: Development settings (DEBUG=True)
    - .env.production: Production settings (DEBUG=False)

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/topics/settings/
"""

import os
from pathlib import Path

import environ

# =============================================================================
# Path Configuration
# =============================================================================
# Build paths inside the project: BASE_DIR / 'subdir'
BASE_DIR = Path(__file__).resolve().parent.parent

# =============================================================================
# Environment Configuration
# =============================================================================
env = environ.Env(
    DEBUG=(bool, False),  # Default to False for safety
    LOG_LEVEL=(str, "INFO"),
)

# Note: In Docker, env vars are passed directly; .env files are for local dev
env_file = os.environ.get("ENV_FILE", BASE_DIR.parent / ".env.development")
if Path(env_file).exists():
    environ.Env.read_env(env_file)

# =============================================================================
# Core Settings
# =============================================================================
# SECURITY WARNING: keep the secret key used in production secret!
# Nothing here signs data; the default only lets tests and scripts boot
SECRET_KEY = env("SECRET_KEY", default="django-insecure-payment-sets-dev-key")

DEBUG = env("DEBUG")

# =============================================================================
# Application Definition
# =============================================================================
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    # Local apps
    "payments",
]

# Payment sets keep no local state; Stripe is the source of truth
DATABASES: dict = {}

# =============================================================================
# Stripe Configuration
# =============================================================================
# Get your API keys from: https://dashboard.stripe.com/apikeys
# Use test keys (sk_test_...) for development, live keys (sk_live_...) for production
STRIPE_SECRET_KEY = env("STRIPE_SECRET_KEY", default="")

# API timeout in seconds (default: 10)
STRIPE_API_TIMEOUT_SECONDS = env.int("STRIPE_API_TIMEOUT_SECONDS", default=10)

# Network retries performed by the Stripe SDK itself (default: 3)
STRIPE_MAX_RETRIES = env.int("STRIPE_MAX_RETRIES", default=3)

# =============================================================================
# Payment Set Configuration
# =============================================================================
# Currency of PaymentIntents created while reconciling (one currency per set)
PAYMENT_SET_CURRENCY = env("PAYMENT_SET_CURRENCY", default="jpy")

# Refund settlement polling: first delay, doubled each poll up to the cap
PAYMENT_SET_REFUND_POLL_INITIAL_DELAY_SECONDS = env.float(
    "PAYMENT_SET_REFUND_POLL_INITIAL_DELAY_SECONDS", default=0.1
)
PAYMENT_SET_REFUND_POLL_MAX_DELAY_SECONDS = env.float(
    "PAYMENT_SET_REFUND_POLL_MAX_DELAY_SECONDS", default=5.0
)

# Polls before a still-pending refund raises RefundPollingTimeoutError
PAYMENT_SET_REFUND_POLL_MAX_ATTEMPTS = env.int(
    "PAYMENT_SET_REFUND_POLL_MAX_ATTEMPTS", default=20
)

# =============================================================================
# Internationalization
# =============================================================================
TIME_ZONE = "UTC"
USE_TZ = True

# =============================================================================
# Logging Configuration
# =============================================================================
LOG_LEVEL = env("LOG_LEVEL")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "simple": {
            "format": "{levelname} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "payments": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "stripe": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}
