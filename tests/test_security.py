"""
Test suite for the security module

Tests wildcard permission matching, subjects, the in-memory realm and
login/logout through the security manager.
"""

import pytest

from secure_bank.audit import AuditTrail, AuditEventType
from secure_bank.exceptions import AuthenticationError, UnauthenticatedError, UnauthorizedError
from secure_bank.security import (
    InMemoryRealm, SecurityManager, Subject, WildcardPermission
)


@pytest.fixture(scope="module")
def realm():
    return InMemoryRealm.from_definitions(
        users={
            "dan": "123, user",
            "sally": "1234, supervisor",
            "root": "secret, admin",
        },
        roles={
            "user": "bankAccount:create, bankAccount:operate, bankAccount:read",
            "supervisor": "bankAccount:close, bankAccount:read",
            "admin": "*",
        }
    )


@pytest.fixture
def audit():
    return AuditTrail()


@pytest.fixture
def security_manager(realm, audit):
    return SecurityManager(realm, audit)


class TestWildcardPermission:
    """Test permission implication rules"""

    @pytest.mark.parametrize("granted,requested", [
        ("*", "bankAccount:close"),
        ("bankAccount", "bankAccount:close"),
        ("bankAccount:*", "bankAccount:operate"),
        ("bankAccount:*", "bankAccount"),
        ("bankAccount:operate", "bankAccount:operate:42"),
        ("bankAccount:operate,read", "bankAccount:read"),
        ("bankAccount:operate,read", "bankAccount:operate,read"),
        ("BankAccount:Operate", "bankaccount:operate"),
        ("bankAccount:*:42", "bankAccount:close:42"),
    ])
    def test_implies(self, granted, requested):
        assert WildcardPermission(granted).implies(requested)

    @pytest.mark.parametrize("granted,requested", [
        ("bankAccount:read", "bankAccount:operate"),
        ("bankAccount:operate:42", "bankAccount:operate"),
        ("bankAccount:operate:42", "bankAccount:operate:43"),
        ("bankAccount:read", "bankAccount:operate,read"),
        ("customer:*", "bankAccount:read"),
    ])
    def test_does_not_imply(self, granted, requested):
        assert not WildcardPermission(granted).implies(requested)

    @pytest.mark.parametrize("text", ["", "   ", "bankAccount::read", "a:,:b"])
    def test_malformed_permission(self, text):
        with pytest.raises(ValueError):
            WildcardPermission(text)

    def test_equality_ignores_case_and_order(self):
        assert WildcardPermission("a:b,c") == WildcardPermission("A:c,b")
        assert len({WildcardPermission("a:b"), WildcardPermission("A:B")}) == 1


class TestSubject:
    """Test subject role and permission checks"""

    def test_roles_and_permissions(self):
        subject = Subject("dan", ["user"], [WildcardPermission("bankAccount:operate")])

        assert subject.is_authenticated
        assert subject.has_role("user")
        assert not subject.has_role("supervisor")
        assert subject.is_permitted("bankAccount:operate")
        assert not subject.is_permitted("bankAccount:close")
        assert subject.has_all_roles(["user"])
        assert not subject.is_permitted_all(["bankAccount:operate", "bankAccount:close"])

    def test_checks_raise_on_denial(self):
        subject = Subject("dan", ["user"], [WildcardPermission("bankAccount:operate")])

        subject.check_role("user")
        subject.check_permission("bankAccount:operate")
        with pytest.raises(UnauthorizedError):
            subject.check_role("supervisor")
        with pytest.raises(UnauthorizedError):
            subject.check_permission("bankAccount:close")

    def test_logout_revokes_everything(self):
        subject = Subject("dan", ["user"], [WildcardPermission("*")])
        subject.logout()

        assert not subject.is_authenticated
        assert not subject.has_role("user")
        assert not subject.is_permitted("bankAccount:read")
        with pytest.raises(UnauthenticatedError):
            subject.check_permission("bankAccount:read")

    def test_unauthorized_is_permission_error(self):
        subject = Subject("dan", [], [])
        with pytest.raises(PermissionError):
            subject.check_role("supervisor")


class TestRealm:
    """Test realm definitions and password verification"""

    def test_authenticate(self, realm):
        assert realm.authenticate("dan", "123").username == "dan"
        assert realm.authenticate("dan", "wrong") is None
        assert realm.authenticate("nobody", "123") is None

    def test_passwords_are_hashed(self, realm):
        user = realm.get_user("dan")
        assert user.password_hash != "123"
        assert len(user.password_salt) == 32

    def test_role_permissions(self, realm):
        permissions = realm.get_permissions(["user", "supervisor"])
        texts = {str(p) for p in permissions}
        assert texts == {
            "bankAccount:create", "bankAccount:operate",
            "bankAccount:read", "bankAccount:close"
        }

    def test_undefined_role_grants_nothing(self):
        realm = InMemoryRealm()
        realm.add_user("eve", "pw", ["ghost"])
        assert realm.get_permissions(["ghost"]) == []

    def test_quoted_permission_with_subparts(self):
        realm = InMemoryRealm.from_definitions(
            users={"dan": "123, user"},
            roles={"user": '"bankAccount:operate,read", bankAccount:create'}
        )
        texts = [str(p) for p in realm.get_permissions(["user"])]
        assert texts == ["bankAccount:operate,read", "bankAccount:create"]

    def test_user_without_password_rejected(self):
        with pytest.raises(ValueError):
            InMemoryRealm.from_definitions(users={"dan": " "}, roles={})

    def test_from_ini(self, tmp_path):
        ini = tmp_path / "realm.ini"
        ini.write_text(
            "[users]\n"
            "Dan = 123, user\n"
            "sally = 1234, supervisor\n"
            "\n"
            "[roles]\n"
            "user = bankAccount:create, bankAccount:operate\n"
            "supervisor = bankAccount:close\n"
        )

        realm = InMemoryRealm.from_ini(ini)

        assert realm.authenticate("Dan", "123") is not None
        assert realm.get_user("dan") is None
        assert realm.role_names() == {"user", "supervisor"}


class TestSecurityManager:
    """Test login and logout"""

    def test_login(self, security_manager, audit):
        subject = security_manager.login("sally", "1234")

        assert subject.principal == "sally"
        assert subject.has_role("supervisor")
        assert subject.is_permitted("bankAccount:close")
        assert not subject.is_permitted("bankAccount:operate")
        assert len(audit.get_events_by_type(AuditEventType.LOGIN_SUCCESS)) == 1

    def test_admin_wildcard(self, security_manager):
        subject = security_manager.login("root", "secret")
        assert subject.is_permitted("bankAccount:close")
        assert subject.is_permitted("anything:at:all")
        assert not subject.has_role("supervisor")

    def test_login_failure(self, security_manager, audit):
        with pytest.raises(AuthenticationError):
            security_manager.login("dan", "nope")

        failures = audit.get_events_by_type(AuditEventType.LOGIN_FAILED)
        assert len(failures) == 1
        assert failures[0].entity_id == "dan"

    def test_sessions_are_distinct(self, security_manager):
        first = security_manager.login("dan", "123")
        second = security_manager.login("dan", "123")
        assert first.session_id != second.session_id

    def test_logout(self, security_manager, audit):
        subject = security_manager.login("dan", "123")
        security_manager.logout(subject)
        security_manager.logout(subject)

        assert not subject.is_authenticated
        assert len(audit.get_events_by_type(AuditEventType.LOGOUT)) == 1

    def test_without_audit_trail(self, realm):
        manager = SecurityManager(realm)
        subject = manager.login("dan", "123")
        manager.logout(subject)
        assert not subject.is_authenticated
