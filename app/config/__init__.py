# =============================================================================
# Django Project Configuration Package
# =============================================================================
# This package contains the Django settings module. The payments app reads
# its Stripe and payment set configuration from here via django.conf.settings.
# =============================================================================
