"""
Transaction helpers.

Every mutating operation of the core runs through :func:`atomic_operation`:
one ``transaction.atomic`` block per call, a bounded lock wait on
PostgreSQL, and a small retry budget for lock/serialization failures
before surfacing :class:`BusyError` to the caller.
"""
from __future__ import annotations

import functools
import logging
import time

from django.db import OperationalError, connection, transaction

from cardflow import conf
from .errors import BusyError

logger = logging.getLogger(__name__)


def _apply_lock_timeout() -> None:
    if connection.vendor != 'postgresql':
        return
    timeout_ms = int(conf.get('LOCK_TIMEOUT_MS'))
    with connection.cursor() as cursor:
        cursor.execute("SELECT set_config('lock_timeout', %s, true)", [f'{timeout_ms}ms'])


def atomic_operation(func):
    """Run ``func`` atomically, retrying on transient database contention.

    When called inside an enclosing transaction the caller owns the retry
    policy, so the function simply joins it through a savepoint.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if connection.in_atomic_block:
            with transaction.atomic():
                return func(*args, **kwargs)
        retries = int(conf.get('TX_RETRIES'))
        backoff_ms = int(conf.get('TX_RETRY_BACKOFF_MS'))
        attempt = 0
        while True:
            attempt += 1
            try:
                with transaction.atomic():
                    _apply_lock_timeout()
                    return func(*args, **kwargs)
            except OperationalError as exc:
                if attempt > retries:
                    logger.warning('%s gave up after %d attempts: %s', func.__name__, attempt, exc)
                    raise BusyError() from exc
                logger.info('%s hit contention (%s), retry %d/%d', func.__name__, exc, attempt, retries)
                time.sleep(backoff_ms * attempt / 1000.0)
    return wrapper
