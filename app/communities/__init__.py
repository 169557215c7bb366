"""
Communities app: the tenant record of the billing core.

A Community is a creator tenant. It owns a connected payment account, a
revenue split, member plans and subscriptions. Only the billing-relevant
fields of the tenant live here; community content (posts, courses, etc.)
belongs to other services.

Related apps:
    - billing: Accounts, subscriptions and transactions keyed by Community
"""
