import django.db.models.deletion
import django.utils.timezone
import model_utils.fields
from django.conf import settings
from django.db import migrations, models

PLAN_CHOICES = [("free", "Starter"), ("pro", "Pro"), ("ultra", "Ultra")]
STATUS_CHOICES = [
    ("trialing", "Trial"),
    ("active", "Active"),
    ("trial_expired", "Trial Expired"),
    ("canceled", "Canceled"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("users", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="PlanChange",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "created",
                    model_utils.fields.AutoCreatedField(
                        default=django.utils.timezone.now, editable=False, verbose_name="created"
                    ),
                ),
                (
                    "modified",
                    model_utils.fields.AutoLastModifiedField(
                        default=django.utils.timezone.now, editable=False, verbose_name="modified"
                    ),
                ),
                ("old_plan_id", models.CharField(choices=PLAN_CHOICES, max_length=20)),
                ("new_plan_id", models.CharField(choices=PLAN_CHOICES, max_length=20)),
                ("old_status", models.CharField(choices=STATUS_CHOICES, max_length=20)),
                ("new_status", models.CharField(choices=STATUS_CHOICES, max_length=20)),
                (
                    "change_type",
                    models.CharField(help_text="Type of change: upgrade, downgrade, or lateral.", max_length=20),
                ),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("admin", "Administrative"),
                            ("processor", "Payment processor"),
                            ("membership", "Membership change"),
                        ],
                        max_length=20,
                    ),
                ),
                ("notes", models.TextField(blank=True)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "org",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="plan_changes",
                        to="users.organization",
                    ),
                ),
            ],
            options={
                "ordering": ["-created"],
            },
        ),
        migrations.CreateModel(
            name="ProcessedWebhookEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "created",
                    model_utils.fields.AutoCreatedField(
                        default=django.utils.timezone.now, editable=False, verbose_name="created"
                    ),
                ),
                (
                    "modified",
                    model_utils.fields.AutoLastModifiedField(
                        default=django.utils.timezone.now, editable=False, verbose_name="modified"
                    ),
                ),
                ("event_id", models.CharField(max_length=255, unique=True)),
                ("event_type", models.CharField(max_length=100)),
                ("event_created_at", models.DateTimeField(blank=True, null=True)),
                (
                    "outcome",
                    models.CharField(
                        choices=[
                            ("applied", "Applied"),
                            ("ignored", "Ignored event type"),
                            ("uncorrelated", "No matching organization"),
                            ("stale", "Older than last applied event"),
                            ("failed", "Failed"),
                        ],
                        max_length=20,
                    ),
                ),
                ("delivery_count", models.PositiveIntegerField(default=1)),
                (
                    "org",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="webhook_events",
                        to="users.organization",
                    ),
                ),
            ],
            options={
                "ordering": ["-created"],
                "indexes": [models.Index(fields=["event_type"], name="webhook_event_type_idx")],
            },
        ),
    ]
