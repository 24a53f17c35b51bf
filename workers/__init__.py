"""
Celery Background Workers.

Runs the analysis tick loop, report pagination and email tasks, and
periodic housekeeping.

Usage:
    celery -A workers worker --loglevel=info
    celery -A workers worker -Q analysis -c 1 --loglevel=info
    celery -A workers beat --loglevel=info
"""

from workers.celery_app import celery_app

__all__ = ["celery_app"]
