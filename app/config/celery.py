"""
Celery configuration for the community billing service.

Celery runs the asynchronous side of webhook ingestion:
- Re-dispatching webhook events whose processing failed
- The periodic sweeper that finds due retries (scheduled by celery-beat)

Redis is both the message broker and result backend. Tasks are
auto-discovered from all installed Django apps.

Usage:
    from billing.tasks import process_event

    process_event.delay(str(processed_event.id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery looks for a tasks.py module in each installed app
app.autodiscover_tasks()
