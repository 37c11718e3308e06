"""
Custom exceptions for the rewards economy.

Every error carries a stable ``code`` so the HTTP layer (and any other
transport) can map it without string matching. The hierarchy mirrors the
three failure families of the engine:

- ValidationError: bad input, rejected before any mutation
- BusinessRuleViolation: a rule said no, nothing was mutated
- ConsistencyFailure: storage misbehaved mid-write, caller must escalate
"""


class RewardsError(Exception):
    """Base exception for all rewards engine errors."""

    def __init__(self, message: str, code: str = "REWARDS_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {'success': False, 'error': self.message, 'code': self.code}


class NotFoundError(RewardsError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper()}_NOT_FOUND")


class AccountNotFoundError(NotFoundError):
    """Account not found."""

    def __init__(self, identifier=None):
        super().__init__("Account", identifier)


class TransactionNotFoundError(NotFoundError):
    """Journal entry not found."""

    def __init__(self, identifier=None):
        super().__init__("Transaction", identifier)


class VIPMembershipNotFoundError(NotFoundError):
    """User has no VIP membership."""

    def __init__(self, user_id=None):
        super().__init__("VIP membership", user_id)
        self.code = "VIP_MEMBERSHIP_NOT_FOUND"


# ==================== Validation ====================

class ValidationError(RewardsError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None, code: str = None):
        self.field = field
        if code is None:
            code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class InvalidAmountError(ValidationError):
    """Zero or negative monetary/points amount."""

    def __init__(self, amount=None):
        self.amount = amount
        super().__init__(f"Amount must be positive (got {amount})", code="INVALID_AMOUNT")


class InvalidSourceConfigError(ValidationError):
    """Malformed reward source definition (negative base values, unknown type, ...)."""

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_SOURCE_CONFIG")


# ==================== Business rules ====================

class BusinessRuleViolation(RewardsError):
    """A business rule rejected the operation. No state was changed."""


class InsufficientFundsError(BusinessRuleViolation):
    """Not enough available balance for the operation."""

    def __init__(self, available, required):
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient funds. Available: {available}, Required: {required}",
            "INSUFFICIENT_FUNDS"
        )


class InsufficientPointsError(BusinessRuleViolation):
    """Not enough points for a conversion."""

    def __init__(self, current: int, required: int):
        self.current = current
        self.required = required
        super().__init__(
            f"Insufficient points. Current: {current}, Required: {required}",
            "INSUFFICIENT_POINTS"
        )


class BelowMinimumWithdrawalError(BusinessRuleViolation):
    """Withdrawal smaller than the wallet's minimum."""

    def __init__(self, amount, minimum):
        self.amount = amount
        self.minimum = minimum
        super().__init__(f"Minimum withdrawal amount is ${minimum}", "BELOW_MINIMUM_WITHDRAWAL")


class AlreadyClaimedError(BusinessRuleViolation):
    """Daily reward already claimed for this calendar day."""

    def __init__(self, reward_date=None):
        self.reward_date = reward_date
        super().__init__("Daily reward already claimed", "ALREADY_CLAIMED")


class AlreadyUsedError(BusinessRuleViolation):
    """One-shot source (deal) already used by this user."""

    def __init__(self, source_type: str = 'deal', source_id=None):
        self.source_type = source_type
        self.source_id = source_id
        super().__init__(f"{source_type.capitalize()} {source_id} already used", "ALREADY_USED")


class AlreadyProcessedError(BusinessRuleViolation):
    """Receipt already submitted/processed by this user."""

    def __init__(self, receipt_id=None):
        self.receipt_id = receipt_id
        super().__init__(f"Receipt {receipt_id} already processed", "ALREADY_PROCESSED")


class AlreadyAppliedError(BusinessRuleViolation):
    """A reward with this idempotency key was already applied."""

    def __init__(self, idempotency_key: str, claim=None):
        self.idempotency_key = idempotency_key
        self.claim = claim
        super().__init__(f"Reward '{idempotency_key}' already applied", "ALREADY_APPLIED")


class DailyCapReachedError(BusinessRuleViolation):
    """Applying the quote would exceed the source's per-day cap."""

    def __init__(self, source_type: str, source_id=None):
        self.source_type = source_type
        self.source_id = source_id
        super().__init__("Daily reward limit reached for this source", "DAILY_CAP_REACHED")


class NotEligibleError(BusinessRuleViolation):
    """User is not eligible for this reward source."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Not eligible: {reason}", "NOT_ELIGIBLE")


class InvalidStatusTransitionError(BusinessRuleViolation):
    """Invalid status transition for a resource."""

    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        super().__init__(message, "INVALID_STATUS_TRANSITION")


# ==================== Consistency ====================

class ConsistencyFailure(RewardsError):
    """
    Ledger and journal could not be written together.

    Raised after the database transaction was rolled back. Never retried
    automatically: the caller decides whether to escalate or reconcile.
    """

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, "CONSISTENCY_FAILURE")
