class LedgerServiceError(Exception):
    pass


class AccountNotFoundError(LedgerServiceError):
    pass


class DuplicateAccountError(LedgerServiceError):
    pass


class ItemNotFoundError(LedgerServiceError):
    pass


class TransactionNotFoundError(LedgerServiceError):
    pass


class InsufficientFundsError(LedgerServiceError):
    pass


class InvalidAmountError(LedgerServiceError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class InvalidReferralError(LedgerServiceError):
    pass
