"""
Workflow tunables.

Values come from ``settings.CARDFLOW`` with the defaults below filling
any gaps, so tests can override a single knob through the ``settings``
fixture without restating the whole dict.
"""
from django.conf import settings

DEFAULTS = {
    'MAX_ATTEMPTS': 3,
    'PAYMENT_VALIDATION_ENABLED': True,
    'CARD_VALIDITY_DAYS': 365,
    'NO_SHOW_GRACE_MINUTES': 30,
    'MIN_ORIENTATION_MINUTES': 20,
    'APPLICATION_TIMEOUT_DAYS': 30,
    'TX_RETRIES': 3,
    'TX_RETRY_BACKOFF_MS': 25,
    'LOCK_TIMEOUT_MS': 2000,
    'REGISTRATION_PREFIX': '',
    'VERIFY_URL_TEMPLATE': '/verify/{registration_number}',
}


def get(name: str):
    overrides = getattr(settings, 'CARDFLOW', None) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
