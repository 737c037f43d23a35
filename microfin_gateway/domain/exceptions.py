"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class LoanNotFoundError(DomainException):
    """Loan does not exist or has been deleted"""

    pass


class RepaymentNotFoundError(DomainException):
    """Repayment does not exist or has been deleted"""

    pass


class InvalidLoanStateError(DomainException):
    """Loan status does not allow the requested operation"""

    pass


class InvalidAmountError(DomainException):
    """Monetary amount is not a positive, cent-precise decimal"""

    pass


class PermissionDeniedError(DomainException):
    """Caller may not act on this resource"""

    pass


class EditWindowExpiredError(DomainException):
    """Repayment is too old to be edited or deleted"""

    pass


class ConcurrencyConflictError(DomainException):
    """Transaction kept conflicting with concurrent writers; safe to retry later"""

    pass
