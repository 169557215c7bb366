import uuid

from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Community",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="When this row was inserted",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="When this row was last written",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("name", models.CharField(help_text="Community display name", max_length=200)),
                (
                    "slug",
                    models.SlugField(
                        help_text="Unique URL identifier", max_length=200, unique=True
                    ),
                ),
                (
                    "owner_user_id",
                    models.CharField(
                        db_index=True,
                        help_text="Identifier of the user who owns the community",
                        max_length=255,
                    ),
                ),
                (
                    "owner_email",
                    models.EmailField(
                        blank=True,
                        default="",
                        help_text="Owner contact email",
                        max_length=254,
                    ),
                ),
                (
                    "stripe_account_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe connected account ID (acct_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "stripe_onboarding_url",
                    models.URLField(
                        blank=True,
                        default="",
                        help_text="Most recent Stripe onboarding link",
                        max_length=1000,
                    ),
                ),
                (
                    "stripe_onboarding_completed",
                    models.BooleanField(
                        default=False,
                        help_text="Whether charges and payouts have been enabled",
                    ),
                ),
            ],
            options={
                "verbose_name": "Community",
                "verbose_name_plural": "Communities",
                "ordering": ["name"],
            },
        ),
    ]
