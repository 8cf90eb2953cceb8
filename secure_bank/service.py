"""
Secure Bank Service Module

Authorized public surface over the account ledger. Every operation takes
the calling subject explicitly and is guarded by the decorators in
``authz``:

- opening an account needs ``bankAccount:create``
- deposits and withdrawals need ``bankAccount:operate`` and ownership
- closing needs the ``supervisor`` role
- reads need an authenticated subject
"""

import threading
from decimal import Decimal
from typing import List, Optional

from .accounts import AccountLedger, AccountTransaction
from .audit import AuditEventType, AuditTrail
from .authz import requires_authentication, requires_owner, requires_permission, requires_role
from .config import SecureBankConfig, get_config
from .currency import AmountLike, Currency
from .exceptions import AuthorizationError, ServiceNotRunningError
from .logging_config import get_logger, log_action, setup_logging
from .security import AuthorizationSubject, InMemoryRealm, SecurityManager


CREATE_PERMISSION = "bankAccount:create"
OPERATE_PERMISSION = "bankAccount:operate"
SUPERVISOR_ROLE = "supervisor"


class SecureBankService:
    """
    Bank service enforcing per-operation authorization
    """

    def __init__(
        self,
        audit_trail: Optional[AuditTrail] = None,
        currency: Currency = Currency.USD
    ):
        self.audit_trail = audit_trail
        self.ledger = AccountLedger(audit_trail, currency)
        self.logger = get_logger("secure_bank.service")
        self._running = False
        self._state_lock = threading.Lock()

    # Lifecycle

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._state_lock:
            if self._running:
                return
            self._running = True
        self.logger.info("Bank service started")
        if self.audit_trail:
            self.audit_trail.log_event(AuditEventType.SERVICE_STARTED, "service", "bank", {})

    def dispose(self) -> None:
        """Stop the service and drop every account"""
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            self.ledger.clear()
        self.logger.info("Bank service stopped")
        if self.audit_trail:
            self.audit_trail.log_event(AuditEventType.SERVICE_STOPPED, "service", "bank", {})

    # Secured operations

    @requires_permission(CREATE_PERMISSION)
    def create_new_account(self, subject: AuthorizationSubject, owner: str) -> int:
        self._assert_running()
        return self.ledger.create_account(owner, created_by=subject.principal)

    @requires_permission(OPERATE_PERMISSION)
    @requires_owner
    def deposit_into(self, subject: AuthorizationSubject, account_id: int, amount: AmountLike) -> Decimal:
        self._assert_running()
        return self.ledger.deposit(account_id, amount, created_by=subject.principal)

    @requires_permission(OPERATE_PERMISSION)
    @requires_owner
    def withdraw_from(self, subject: AuthorizationSubject, account_id: int, amount: AmountLike) -> Decimal:
        self._assert_running()
        return self.ledger.withdraw(account_id, amount, created_by=subject.principal)

    @requires_role(SUPERVISOR_ROLE)
    def close_account(self, subject: AuthorizationSubject, account_id: int) -> Decimal:
        """Close an account and return the balance it held"""
        self._assert_running()
        return self.ledger.close(account_id, created_by=subject.principal)

    # Read accessors

    @requires_authentication
    def get_owner_of(self, subject: AuthorizationSubject, account_id: int) -> str:
        self._assert_running()
        return self.ledger.get_owner(account_id)

    @requires_authentication
    def is_account_active(self, subject: AuthorizationSubject, account_id: int) -> bool:
        self._assert_running()
        return self.ledger.is_active(account_id)

    @requires_authentication
    def get_balance_of(self, subject: AuthorizationSubject, account_id: int) -> Decimal:
        self._assert_running()
        return self.ledger.get_balance(account_id)

    @requires_authentication
    def get_tx_history_for(self, subject: AuthorizationSubject, account_id: int) -> List[AccountTransaction]:
        self._assert_running()
        return self.ledger.get_transactions(account_id)

    @requires_authentication
    def search_account_ids_by_owner(self, subject: AuthorizationSubject, owner: str) -> List[int]:
        self._assert_running()
        return self.ledger.find_account_ids_by_owner(owner)

    # Private helper methods

    def _assert_running(self) -> None:
        if not self._running:
            raise ServiceNotRunningError("This bank service is not running")

    def _on_authorization_denied(self, subject: AuthorizationSubject, operation: str,
                                 error: AuthorizationError) -> None:
        principal = subject.principal
        log_action(
            self.logger, "warning", f"Authorization denied for {operation}: {error}",
            user_id=principal, action=operation, resource="bank_service"
        )
        if self.audit_trail:
            self.audit_trail.log_event(
                AuditEventType.AUTHORIZATION_DENIED, "subject", principal or "anonymous",
                {"operation": operation, "reason": str(error)}, user_id=principal
            )


class SecureBankSystem:
    """Audit trail, security manager and service wired from configuration"""

    def __init__(self, config: Optional[SecureBankConfig] = None, configure_logging: bool = True):
        self.config = config or get_config()

        if configure_logging:
            setup_logging(self.config.log_level, "secure_bank", self.config.log_format)

        self.audit_trail = AuditTrail() if self.config.enable_audit_logging else None
        self.realm = InMemoryRealm.from_config(self.config)
        self.security_manager = SecurityManager(self.realm, self.audit_trail)
        self.service = SecureBankService(self.audit_trail, Currency[self.config.currency])

    def start(self) -> None:
        self.service.start()

    def dispose(self) -> None:
        self.service.dispose()
