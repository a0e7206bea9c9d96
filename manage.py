#!/usr/bin/env python
"""
Command line entry point for the emedicard project.

Besides the usual Django commands this exposes the workflow's periodic
jobs (``sweep_no_shows``, ``expire_applications``,
``expire_health_cards``) and the bootstrap commands
(``seed_catalog``, ``generate_orientation_schedules``,
``ensure_test_users``).
"""
import os
import sys


def main() -> None:
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'emedicard.settings')
    try:
        from django.core.management import execute_from_command_line  # type: ignore
    except ImportError as exc:
        raise ImportError(
            "Couldn't import Django. Is it installed and is the virtual "
            "environment active?"
        ) from exc
    execute_from_command_line(sys.argv)


if __name__ == '__main__':
    main()
