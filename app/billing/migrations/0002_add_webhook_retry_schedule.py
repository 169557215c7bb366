"""
Add celery-beat schedule for retrying unprocessed webhook events.

The retry_unprocessed_events task runs every minute and re-dispatches
failed or stale ProcessedEvent rows whose backoff has elapsed.
"""

from django.db import migrations

TASK_NAME = "Retry Unprocessed Webhook Events"


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for the webhook retry sweeper."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=1,
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "billing.tasks.retry_unprocessed_events",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Re-dispatches webhook events whose processing failed, "
                "until the attempt ceiling dead-letters them."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
