"""
Add celery-beat schedules for the custody sweeps.

Both sweeps run every 15 minutes:
- expire_stale_orders cancels unpaid orders past their expiry
- release_due_escrows pays out delivered orders past their auto-release deadline
"""

from django.db import migrations

SWEEPS = [
    {
        "name": "Expire Stale Orders",
        "task": "payments.tasks.expire_stale_orders",
        "description": (
            "Scans for pending orders past expires_at and queues one "
            "expiry task per order."
        ),
    },
    {
        "name": "Release Due Escrows",
        "task": "payments.tasks.release_due_escrows",
        "description": (
            "Scans for held escrow on delivered orders past auto_release_at "
            "and queues one release task per hold."
        ),
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for the sweeps."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=15,
        period="minutes",
    )

    for sweep in SWEEPS:
        PeriodicTask.objects.get_or_create(
            name=sweep["name"],
            defaults={
                "task": sweep["task"],
                "interval": schedule,
                "enabled": True,
                "description": sweep["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[sweep["name"] for sweep in SWEEPS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
