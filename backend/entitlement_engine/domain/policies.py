"""Entitlement revocation policy.

Voided invoices and deactivated memberships are routed to a revocation hook.
Whether that hook removes access is a product decision, made explicit here
and selected by ENTITLEMENT_REVOCATION_POLICY.
"""

from enum import Enum


class RevocationPolicy(str, Enum):
    RETAIN = "retain"  # keep historical access; the hook only logs
    REVOKE = "revoke"  # delete the grant
