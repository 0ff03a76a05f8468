"""
Celery configuration for the custody engine.

Celery runs the custody sweeps:
- Cancelling pending orders past their expiry
- Auto-releasing escrow on delivered orders past the release deadline

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps; the periodic
schedule lives in the database (django-celery-beat).

Usage:
    from payments.tasks import release_due_escrows

    release_due_escrows.delay()

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
