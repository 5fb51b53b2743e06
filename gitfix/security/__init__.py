from .context import Principal
from .policy import OrganizationPolicy, PolicyEngine, enforce
from .tokens import SubscriptionClaims, SubscriptionToken, SubscriptionTokenService

__all__ = [
    "OrganizationPolicy",
    "PolicyEngine",
    "Principal",
    "SubscriptionClaims",
    "SubscriptionToken",
    "SubscriptionTokenService",
    "enforce",
]
