import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django_fsm
from django.db import migrations, models

import billing.models.account


def timestamps():
    return [
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
    ]


def version_field():
    return (
        "version",
        models.PositiveIntegerField(
            default=1,
            help_text="Version for optimistic locking - incremented on each save",
        ),
    )


VARIANT_CHOICES = [("platform", "Platform"), ("member", "Member")]

SUBSCRIPTION_STATUS_CHOICES = [
    ("incomplete", "Incomplete"),
    ("incomplete_expired", "Incomplete Expired"),
    ("trialing", "Trialing"),
    ("active", "Active"),
    ("past_due", "Past Due"),
    ("canceled", "Canceled"),
    ("unpaid", "Unpaid"),
]

INTERVAL_CHOICES = [("month", "Month"), ("year", "Year")]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("communities", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Account",
            fields=[
                *timestamps(),
                version_field(),
                (
                    "external_account_id",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe Account ID (acct_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "account_type",
                    models.CharField(
                        choices=[
                            ("standard", "Standard"),
                            ("express", "Express"),
                            ("custom", "Custom"),
                        ],
                        default="express",
                        help_text="Stripe Connect account type",
                        max_length=20,
                    ),
                ),
                (
                    "country",
                    models.CharField(
                        default="BR",
                        help_text="ISO 3166-1 alpha-2 country code",
                        max_length=2,
                    ),
                ),
                (
                    "business_type",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Business type given at onboarding",
                        max_length=50,
                    ),
                ),
                (
                    "email",
                    models.EmailField(
                        blank=True,
                        default="",
                        help_text="Account email given at onboarding",
                        max_length=254,
                    ),
                ),
                (
                    "verification_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("verified", "Verified"),
                            ("rejected", "Rejected"),
                            ("restricted", "Restricted"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Derived verification state",
                        max_length=20,
                    ),
                ),
                (
                    "charges_enabled",
                    models.BooleanField(
                        default=False, help_text="Whether Stripe has enabled charges"
                    ),
                ),
                (
                    "payouts_enabled",
                    models.BooleanField(
                        default=False, help_text="Whether Stripe has enabled payouts"
                    ),
                ),
                (
                    "details_submitted",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the onboarding form was submitted",
                    ),
                ),
                (
                    "requirements",
                    models.JSONField(
                        blank=True,
                        default=billing.models.account.default_requirements,
                        help_text="Outstanding requirements (currently_due, eventually_due, past_due, pending_verification)",
                    ),
                ),
                (
                    "capabilities",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Capability map reported by Stripe",
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata for extensibility",
                    ),
                ),
                (
                    "is_disabled",
                    models.BooleanField(
                        default=False,
                        help_text="Soft-disabled after account closure or deauthorization",
                    ),
                ),
                (
                    "disabled_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the account was soft-disabled",
                        null=True,
                    ),
                ),
                (
                    "last_synced_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Last time status was applied from Stripe",
                        null=True,
                    ),
                ),
                (
                    "tenant",
                    models.OneToOneField(
                        help_text="Community this account belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_account",
                        to="communities.community",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Account",
                "verbose_name_plural": "Payment Accounts",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["verification_status", "charges_enabled"],
                        name="billing_acc_verific_5b1c2e_idx",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Plan",
            fields=[
                *timestamps(),
                (
                    "variant",
                    models.CharField(
                        choices=VARIANT_CHOICES,
                        db_index=True,
                        help_text="Whether this is a platform or a member plan",
                        max_length=20,
                    ),
                ),
                ("name", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True, default="")),
                (
                    "price_cents",
                    models.PositiveBigIntegerField(
                        help_text="Price per interval in smallest currency unit"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="brl",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "interval",
                    models.CharField(
                        choices=INTERVAL_CHOICES, default="month", max_length=10
                    ),
                ),
                ("trial_days", models.PositiveSmallIntegerField(default=0)),
                ("features", models.JSONField(blank=True, default=list)),
                ("max_members", models.PositiveIntegerField(blank=True, null=True)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                (
                    "stripe_product_id",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "stripe_price_id",
                    models.CharField(
                        blank=True, db_index=True, default="", max_length=255
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        blank=True,
                        help_text="Community selling this plan (member plans only)",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="plans",
                        to="communities.community",
                    ),
                ),
            ],
            options={
                "verbose_name": "Plan",
                "verbose_name_plural": "Plans",
                "ordering": ["price_cents", "name"],
                "constraints": [
                    models.CheckConstraint(
                        check=models.Q(
                            models.Q(("tenant__isnull", True), ("variant", "platform")),
                            models.Q(("tenant__isnull", False), ("variant", "member")),
                            _connector="OR",
                        ),
                        name="plan_tenant_matches_variant",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="ProcessedEvent",
            fields=[
                *timestamps(),
                (
                    "external_event_id",
                    models.CharField(
                        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe event type (e.g., 'invoice.paid')",
                        max_length=100,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(
                        help_text="Full verified webhook payload from Stripe (JSON)"
                    ),
                ),
                ("processed", models.BooleanField(db_index=True, default=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("received", "Received"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                            ("dead_lettered", "Dead Lettered"),
                        ],
                        db_index=True,
                        default="received",
                        max_length=20,
                    ),
                ),
                (
                    "attempt_count",
                    models.PositiveSmallIntegerField(
                        default=0, help_text="Number of dispatch attempts"
                    ),
                ),
                ("last_error", models.TextField(blank=True, default="")),
                ("received_at", models.DateTimeField(auto_now_add=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "claimed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the current processing claim was taken",
                        null=True,
                    ),
                ),
                (
                    "next_attempt_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Earliest time the sweeper may retry this event",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Processed Event",
                "verbose_name_plural": "Processed Events",
                "ordering": ["-received_at"],
                "indexes": [
                    models.Index(
                        fields=["processed", "status", "next_attempt_at"],
                        name="billing_pro_process_8d4f1a_idx",
                    ),
                    models.Index(
                        fields=["event_type", "received_at"],
                        name="billing_pro_event_t_3e9b7c_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RevenueSplit",
            fields=[
                *timestamps(),
                (
                    "platform_percentage",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Platform share of each payment, in percent",
                        max_digits=5,
                        validators=[
                            django.core.validators.MinValueValidator(Decimal("0")),
                            django.core.validators.MaxValueValidator(Decimal("100")),
                        ],
                    ),
                ),
                (
                    "effective_from",
                    models.DateTimeField(help_text="When this split became effective"),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        db_index=True,
                        default=True,
                        help_text="Whether this is the tenant's current split",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        help_text="Community this split applies to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="revenue_splits",
                        to="communities.community",
                    ),
                ),
            ],
            options={
                "verbose_name": "Revenue Split",
                "verbose_name_plural": "Revenue Splits",
                "ordering": ["-effective_from"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_active", True)),
                        fields=("tenant",),
                        name="revenue_split_one_active_per_tenant",
                    ),
                    models.CheckConstraint(
                        check=models.Q(
                            ("platform_percentage__gte", 0),
                            ("platform_percentage__lte", 100),
                        ),
                        name="revenue_split_percentage_range",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                *timestamps(),
                version_field(),
                (
                    "variant",
                    models.CharField(
                        choices=VARIANT_CHOICES,
                        db_index=True,
                        help_text="Platform rent or member access",
                        max_length=20,
                    ),
                ),
                (
                    "payer_id",
                    models.CharField(
                        db_index=True,
                        help_text="Tenant owner id (platform) or end-user id (member)",
                        max_length=255,
                    ),
                ),
                (
                    "external_subscription_id",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe Subscription ID (sub_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "external_customer_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Stripe Customer ID (cus_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "external_price_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe Price ID (price_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=SUBSCRIPTION_STATUS_CHOICES,
                        db_index=True,
                        default="incomplete",
                        help_text="Current status of the subscription (managed by FSM)",
                        max_length=50,
                    ),
                ),
                ("current_period_start", models.DateTimeField(blank=True, null=True)),
                ("current_period_end", models.DateTimeField(blank=True, null=True)),
                ("trial_start", models.DateTimeField(blank=True, null=True)),
                ("trial_end", models.DateTimeField(blank=True, null=True)),
                (
                    "cancel_at_period_end",
                    models.BooleanField(
                        default=False,
                        help_text="Whether subscription will cancel at period end",
                    ),
                ),
                (
                    "canceled_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When Stripe canceled the subscription",
                        null=True,
                    ),
                ),
                (
                    "cancel_requested_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When cancellation was requested through the API",
                        null=True,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Amount per interval in smallest currency unit",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="brl",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "billing_interval",
                    models.CharField(
                        choices=INTERVAL_CHOICES, default="month", max_length=10
                    ),
                ),
                (
                    "invoiced_period_start",
                    models.DateTimeField(
                        blank=True,
                        help_text="Start of the period whose amount and currency are frozen",
                        null=True,
                    ),
                ),
                (
                    "last_event_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Stripe timestamp of the last applied lifecycle event",
                        null=True,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata for extensibility",
                    ),
                ),
                (
                    "plan",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="subscriptions",
                        to="billing.plan",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        help_text="Community this subscription belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to="communities.community",
                    ),
                ),
            ],
            options={
                "verbose_name": "Subscription",
                "verbose_name_plural": "Subscriptions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["tenant", "variant", "status"],
                        name="billing_sub_tenant__a71c3d_idx",
                    ),
                    models.Index(
                        fields=["payer_id", "status"],
                        name="billing_sub_payer_i_2f6e90_idx",
                    ),
                    models.Index(
                        fields=["status", "current_period_end"],
                        name="billing_sub_status_c4d812_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SubscriptionAnomaly",
            fields=[
                *timestamps(),
                (
                    "from_status",
                    models.CharField(choices=SUBSCRIPTION_STATUS_CHOICES, max_length=30),
                ),
                ("requested_status", models.CharField(max_length=30)),
                (
                    "source_event_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe event that requested the transition",
                        max_length=255,
                    ),
                ),
                ("reason", models.TextField(blank=True, default="")),
                ("resolved", models.BooleanField(db_index=True, default=False)),
                (
                    "subscription",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="anomalies",
                        to="billing.subscription",
                    ),
                ),
            ],
            options={
                "verbose_name": "Subscription Anomaly",
                "verbose_name_plural": "Subscription Anomalies",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                *timestamps(),
                (
                    "external_charge_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Stripe PaymentIntent or Charge ID",
                        max_length=255,
                    ),
                ),
                (
                    "external_reference_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Secondary Stripe ID (dispute or invoice)",
                        max_length=255,
                    ),
                ),
                (
                    "variant",
                    models.CharField(
                        blank=True, choices=VARIANT_CHOICES, default="", max_length=20
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("payment", "Payment"),
                            ("refund", "Refund"),
                            ("chargeback", "Chargeback"),
                            ("split", "Split"),
                        ],
                        db_index=True,
                        max_length=20,
                    ),
                ),
                (
                    "amount_cents",
                    models.BigIntegerField(
                        help_text="Signed amount in smallest currency unit"
                    ),
                ),
                ("currency", models.CharField(max_length=3)),
                (
                    "platform_percentage",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0"),
                        help_text="Platform percentage applied to this row",
                        max_digits=5,
                    ),
                ),
                ("platform_amount_cents", models.BigIntegerField(default=0)),
                ("creator_amount_cents", models.BigIntegerField(default=0)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("canceled", "Canceled"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("failure_reason", models.TextField(blank=True, default="")),
                (
                    "processed_at",
                    models.DateTimeField(blank=True, db_index=True, null=True),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        help_text="Unique key derived from Stripe identifiers",
                        max_length=255,
                        unique=True,
                    ),
                ),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "subscription",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="billing.subscription",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="communities.community",
                    ),
                ),
            ],
            options={
                "verbose_name": "Transaction",
                "verbose_name_plural": "Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["tenant", "status", "processed_at"],
                        name="billing_tra_tenant__9e02b4_idx",
                    ),
                    models.Index(
                        fields=["tenant", "kind"],
                        name="billing_tra_tenant__61f7ad_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        check=models.Q(
                            platform_amount_cents=models.F("amount_cents")
                            - models.F("creator_amount_cents")
                        ),
                        name="transaction_split_sums_to_amount",
                    )
                ],
            },
        ),
    ]
