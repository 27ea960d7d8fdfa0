from .user import User
from .profile import Profile, SUBSCRIPTION_STATUSES, check_subscription_status
from .billing_event import BillingEventLog

__all__ = ["User", "Profile", "SUBSCRIPTION_STATUSES", "check_subscription_status", "BillingEventLog"]
