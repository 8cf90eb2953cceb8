"""
Authorization Decorators

Declarative access checks for secured service methods. A decorated method
takes the calling subject as its first argument after ``self``; every check
runs before the method body, so a denied call never touches state.

On denial the decorator calls ``self._on_authorization_denied(subject,
operation, error)`` when the instance defines it, then re-raises.

    class Service:
        @requires_permission("bankAccount:operate")
        @requires_owner
        def deposit_into(self, subject, account_id, amount): ...
"""

import inspect
from functools import wraps
from typing import Callable

from .exceptions import AuthorizationError, UnauthorizedError
from .security import AuthorizationSubject


def _guarded(check: Callable) -> Callable:
    """Build a decorator that runs ``check(instance, subject, bound_args)`` first"""
    def decorator(func):
        signature = inspect.signature(func)

        @wraps(func)
        def wrapper(self, subject: AuthorizationSubject, *args, **kwargs):
            bound = signature.bind(self, subject, *args, **kwargs)
            try:
                check(self, subject, bound.arguments)
            except AuthorizationError as error:
                on_denied = getattr(self, "_on_authorization_denied", None)
                if on_denied is not None:
                    on_denied(subject, func.__name__, error)
                raise
            return func(self, subject, *args, **kwargs)

        return wrapper
    return decorator


def requires_authentication(func):
    """Caller must be an authenticated subject"""
    def check(instance, subject, arguments):
        subject.check_authenticated()
    return _guarded(check)(func)


def requires_permission(permission: str):
    """Caller must be granted ``permission``"""
    def check(instance, subject, arguments):
        subject.check_permission(permission)
    return _guarded(check)


def requires_role(role: str):
    """Caller must hold ``role``"""
    def check(instance, subject, arguments):
        subject.check_role(role)
    return _guarded(check)


def requires_owner(func):
    """
    Caller must be the principal that opened the account named by the
    method's ``account_id`` argument. The instance must expose ``ledger``;
    if it also defines ``_assert_running`` that runs before the lookup, so a
    stopped service reports it is stopped rather than that the account is
    gone.
    """
    def check(instance, subject, arguments):
        subject.check_authenticated()
        assert_running = getattr(instance, "_assert_running", None)
        if assert_running is not None:
            assert_running()
        account = instance.ledger.get_account(arguments["account_id"])
        if account.created_by != subject.principal:
            raise UnauthorizedError(
                f"Subject '{subject.principal}' is not the owner of account {account.id}"
            )
    return _guarded(check)(func)
