"""
Error types raised by the bank service.

Business rule violations derive from BankError, security failures from
AuthorizationError (itself a PermissionError).
"""


class BankError(Exception):
    """Base class for ledger and service failures"""


class AccountNotFoundError(BankError, LookupError):
    """No account exists with the requested id"""

    def __init__(self, account_id):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class InactiveAccountError(BankError):
    """A mutating operation was attempted on a closed account"""

    def __init__(self, account_id):
        super().__init__(f"Account {account_id} is closed")
        self.account_id = account_id


class NotEnoughFundsError(BankError):
    """Withdrawal amount exceeds the account balance"""

    def __init__(self, account_id, requested, available):
        super().__init__(
            f"Cannot withdraw {requested} from account {account_id}: balance is {available}"
        )
        self.account_id = account_id
        self.requested = requested
        self.available = available


class InvalidAmountError(BankError, ValueError):
    """Deposit or withdrawal amount is not a positive finite number"""


class ServiceNotRunningError(BankError, RuntimeError):
    """The bank service was used before start() or after dispose()"""


class AuthorizationError(PermissionError):
    """Base class for security failures"""


class UnauthenticatedError(AuthorizationError):
    """The caller has not authenticated"""


class UnauthorizedError(AuthorizationError):
    """The caller lacks a required role, permission or ownership"""


class AuthenticationError(AuthorizationError):
    """Login failed: unknown user or wrong password"""
