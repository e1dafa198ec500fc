"""Client runtime for the policy-management service"""

from policy_portal.portal import PortalClient

__all__ = ["PortalClient"]
