"""
Business errors raised by the ledger.

Every error carries an HTTP status, a stable machine code and, for the
client-facing token errors, a help message. The HTTP layer maps them with a
single exception handler; nothing in here is retried automatically.
"""

from typing import Optional


class LedgerError(Exception):
    status_code: int = 400
    code: str = "ledger_error"
    help: Optional[str] = None

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.help:
            body["help"] = self.help
        if self.details:
            body["details"] = self.details
        return body


class EntityNotFound(LedgerError):
    status_code = 404
    code = "not_found"


class InvalidSessionState(LedgerError):
    status_code = 409
    code = "invalid_session_state"


# --------------------
# Capacity / eligibility
# --------------------

class CapacityExceeded(LedgerError):
    status_code = 409
    code = "capacity_exceeded"


class PackageExpired(LedgerError):
    code = "package_expired"


class PackageInactive(LedgerError):
    code = "package_inactive"


class CrossTenantMismatch(LedgerError):
    status_code = 403
    code = "cross_tenant_mismatch"


class PackageClientMismatch(LedgerError):
    code = "package_client_mismatch"


# --------------------
# Validation tokens
# --------------------

class TokenNotFound(LedgerError):
    status_code = 404
    code = "token_not_found"
    help = "This validation link appears to be invalid. Please contact your trainer for a new link."


class ValidationExpired(LedgerError):
    status_code = 410
    code = "validation_expired"
    help = "This validation link has expired. Please contact your trainer if the session took place."


# --------------------
# Payments
# --------------------

class InvalidPaymentAmount(LedgerError):
    code = "invalid_payment_amount"


class ExceedsRemainingBalance(LedgerError):
    code = "exceeds_remaining_balance"


# --------------------
# Configuration defects
# --------------------

class ConfigurationError(LedgerError):
    status_code = 500
    code = "configuration_error"


class InvalidTierTable(ConfigurationError):
    # Raised while a table is being submitted, before anything is stored
    status_code = 422
    code = "invalid_tier_table"


class NoTierMatchesSessionCount(ConfigurationError):
    code = "no_tier_matches_session_count"


class CommissionNotConfigured(ConfigurationError):
    code = "commission_not_configured"


# --------------------
# Commission profiles / closed periods
# --------------------

class DuplicateProfileName(LedgerError):
    status_code = 409
    code = "duplicate_profile_name"


class PeriodNotEnded(LedgerError):
    status_code = 409
    code = "period_not_ended"
    help = "A month can only be closed once it is over."
