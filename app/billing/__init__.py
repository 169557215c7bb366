"""
Billing app: the payment reconciliation core.

This app keeps the local record of connected payment accounts,
subscriptions and revenue consistent with Stripe, which is the system of
record for money movement.

Components (leaves first):
    - Account Registry (services.account_registry): connected accounts and
      their capability flags
    - Revenue Split Policy (services.revenue_split): platform/creator split
    - Subscription Ledger (services.subscription_ledger): platform and
      member subscriptions mirroring the processor lifecycle
    - Transaction Ledger (services.transaction_ledger): append-only money
      movements annotated with split amounts
    - Webhook Ingestion Engine (webhooks): verification, deduplication,
      typed dispatch and retry

Related apps:
    - communities: the tenant record (Community)

Usage:
    from billing.adapters import get_processor_client
    from billing.services import AccountRegistry

    registry = AccountRegistry(get_processor_client())
    result = registry.begin_onboarding(tenant_id=community.id, email=owner_email)
"""
