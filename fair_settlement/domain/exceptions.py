"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class NotFoundError(DomainException):
    """Referenced purchase or installment does not exist"""

    pass


class OverpaymentError(DomainException):
    """Payment would exceed the installment's remaining due amount"""

    def __init__(self, installment_id, amount_cents: int, remaining_cents: int):
        self.installment_id = installment_id
        self.amount_cents = amount_cents
        self.remaining_cents = remaining_cents
        super().__init__(
            f"Payment of {amount_cents} cents exceeds remaining {remaining_cents} cents "
            f"on installment {installment_id}"
        )


class InvalidPaymentAmountError(DomainException):
    """Payment amount is not a positive number of cents"""

    pass


class InvalidScheduleError(DomainException):
    """Due date is malformed or breaks the installment ordering rule"""

    pass


class PersistenceError(DomainException):
    """Underlying store rejected the write or became unavailable"""

    pass


class SettlementTimeoutError(PersistenceError):
    """Statement or connection checkout exceeded its timeout"""

    pass


class ConflictError(DomainException):
    """Concurrent mutation detected (lock or serialization failure)"""

    pass


class PurchaseCancelledError(DomainException):
    """Payment state of a cancelled purchase cannot change"""

    def __init__(self, purchase_id):
        self.purchase_id = purchase_id
        super().__init__(f"Purchase {purchase_id} is cancelled")
