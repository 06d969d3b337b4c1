import django.contrib.auth.models
import django.contrib.auth.validators
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
PAGE_CHOICES = [
    ("dashboard", "Dashboard"),
    ("analytics", "Analytics"),
    ("reports", "Reports"),
    ("projects", "Projects"),
    ("team", "Team"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="Organization",
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
                ("name", models.CharField(help_text="Name of the organization, e.g. 'My Organization'", max_length=255)),
                ("slug", models.SlugField(blank=True, unique=True)),
                (
                    "plan_id",
                    models.CharField(
                        choices=PLAN_CHOICES,
                        default="free",
                        help_text="Plan on record. May lag; derivation corrects it.",
                        max_length=20,
                    ),
                ),
                ("billing_status", models.CharField(choices=STATUS_CHOICES, default="active", max_length=20)),
                ("trial_started_at", models.DateTimeField(blank=True, null=True)),
                ("trial_ends_at", models.DateTimeField(blank=True, null=True)),
                (
                    "trial_plan_id",
                    models.CharField(
                        blank=True,
                        choices=PLAN_CHOICES,
                        help_text="Paid plan the trial was (or is) for.",
                        max_length=20,
                        null=True,
                    ),
                ),
                (
                    "trial_ended_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Set once, when the first trial concludes. Its presence disables further trials.",
                        null=True,
                    ),
                ),
                (
                    "cancellation_effective_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When a scheduled cancellation of the paid plan takes effect.",
                        null=True,
                    ),
                ),
                ("subscription_provider", models.CharField(blank=True, max_length=32, null=True)),
                (
                    "subscription_id",
                    models.CharField(blank=True, help_text="Stripe Subscription ID (sub_xxx).", max_length=255, null=True),
                ),
                (
                    "subscription_customer_id",
                    models.CharField(blank=True, help_text="Stripe Customer ID (cus_xxx).", max_length=255, null=True),
                ),
                ("subscription_price_id", models.CharField(blank=True, max_length=255, null=True)),
                ("subscription_current_period_end", models.DateTimeField(blank=True, null=True)),
                (
                    "subscription_event_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Creation time of the last processor event reconciled.",
                        null=True,
                    ),
                ),
                (
                    "billing_version",
                    models.PositiveIntegerField(
                        default=0, editable=False, help_text="Compare-and-set token for billing writes."
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["subscription_customer_id"], name="org_subscription_customer_idx"),
                    models.Index(fields=["subscription_id"], name="org_subscription_id_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="User",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("password", models.CharField(max_length=128, verbose_name="password")),
                ("last_login", models.DateTimeField(blank=True, null=True, verbose_name="last login")),
                (
                    "is_superuser",
                    models.BooleanField(
                        default=False,
                        help_text="Designates that this user has all permissions without explicitly assigning them.",
                        verbose_name="superuser status",
                    ),
                ),
                (
                    "username",
                    models.CharField(
                        error_messages={"unique": "A user with that username already exists."},
                        help_text="Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.",
                        max_length=150,
                        unique=True,
                        validators=[django.contrib.auth.validators.UnicodeUsernameValidator()],
                        verbose_name="username",
                    ),
                ),
                ("email", models.EmailField(blank=True, max_length=254, verbose_name="email address")),
                (
                    "is_staff",
                    models.BooleanField(
                        default=False,
                        help_text="Designates whether the user can log into this admin site.",
                        verbose_name="staff status",
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        default=True,
                        help_text="Designates whether this user should be treated as active. Unselect this instead of deleting accounts.",
                        verbose_name="active",
                    ),
                ),
                ("date_joined", models.DateTimeField(default=django.utils.timezone.now, verbose_name="date joined")),
                ("name", models.CharField(blank=True, max_length=255, verbose_name="Name of User")),
                (
                    "groups",
                    models.ManyToManyField(
                        blank=True,
                        help_text="The groups this user belongs to. A user will get all permissions granted to each of their groups.",
                        related_name="user_set",
                        related_query_name="user",
                        to="auth.group",
                        verbose_name="groups",
                    ),
                ),
                (
                    "user_permissions",
                    models.ManyToManyField(
                        blank=True,
                        help_text="Specific permissions for this user.",
                        related_name="user_set",
                        related_query_name="user",
                        to="auth.permission",
                        verbose_name="user permissions",
                    ),
                ),
            ],
            options={
                "verbose_name": "user",
                "verbose_name_plural": "users",
                "abstract": False,
            },
            managers=[
                ("objects", django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name="Membership",
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
                (
                    "role",
                    models.CharField(
                        choices=[("owner", "Owner"), ("admin", "Admin"), ("member", "Member")],
                        default="member",
                        max_length=16,
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                (
                    "org",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="memberships",
                        to="users.organization",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="memberships",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [models.Index(fields=["org", "user"], name="membership_org_user_idx")],
                "unique_together": {("user", "org")},
            },
        ),
        migrations.AddField(
            model_name="user",
            name="orgs",
            field=models.ManyToManyField(
                blank=True,
                related_name="users",
                through="users.Membership",
                to="users.organization",
            ),
        ),
        migrations.CreateModel(
            name="PagePermission",
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
                ("page", models.CharField(choices=PAGE_CHOICES, max_length=32)),
                ("can_access", models.BooleanField(default=True)),
                (
                    "org",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="page_permissions",
                        to="users.organization",
                    ),
                ),
                (
                    "updated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="page_permissions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("org", "user", "page"), name="unique_page_permission"),
                ],
            },
        ),
    ]
