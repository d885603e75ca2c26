"""Domain-specific exceptions."""


class ServiceError(Exception):
    code = "service_error"


class InvalidRequest(ServiceError):
    """Malformed input, rejected before any state is touched."""

    code = "invalid_request"


class UnknownPlan(InvalidRequest):
    code = "unknown_plan"


class InvalidBillingCycle(InvalidRequest):
    code = "invalid_billing_cycle"


class UnknownFeature(InvalidRequest):
    code = "unknown_feature"


class PolicyError(ServiceError):
    """A legal request the plan rules refuse; retrying cannot help."""

    code = "policy_error"


class AlreadyOnPlan(PolicyError):
    code = "already_on_plan"


class PlanDowngradeBlocked(PolicyError):
    code = "plan_downgrade_blocked"


class SubscriptionNotFound(ServiceError):
    code = "subscription_not_found"


class QuotaExceeded(ServiceError):
    code = "quota_exceeded"


class ConcurrencyConflict(ServiceError):
    code = "concurrency_conflict"


class ReconciliationRequired(ServiceError):
    """A confirmed payment could not be applied and needs an operator."""

    code = "reconciliation_required"


class StorageUnavailable(ServiceError):
    code = "storage_unavailable"
