"""
Security Module

Subjects, wildcard permissions, an in-memory user/role realm and the
security manager that authenticates users into subjects.

The bank service only depends on the AuthorizationSubject interface, so any
external identity provider can be plugged in by implementing it.
"""

import configparser
import csv
import hashlib
import hmac
import secrets
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple, Union

from .audit import AuditEventType, AuditTrail
from .exceptions import AuthenticationError, UnauthenticatedError, UnauthorizedError
from .logging_config import get_logger, log_action


WILDCARD = "*"
PART_DIVIDER = ":"
SUBPART_DIVIDER = ","


class WildcardPermission:
    """
    Colon-separated permission such as ``bankAccount:operate:42``.

    Each part may hold comma-separated alternatives or ``*``. Comparison is
    case-insensitive. A permission with fewer parts implies every
    permission that extends it, so ``bankAccount`` implies
    ``bankAccount:close``.
    """

    def __init__(self, text: str):
        text = (text or "").strip()
        if not text:
            raise ValueError("Permission string cannot be empty")

        parts: List[FrozenSet[str]] = []
        for raw_part in text.split(PART_DIVIDER):
            subparts = frozenset(
                s.strip().lower() for s in raw_part.split(SUBPART_DIVIDER) if s.strip()
            )
            if not subparts:
                raise ValueError(f"Permission '{text}' has an empty part")
            parts.append(subparts)

        self.text = text
        self.parts: Tuple[FrozenSet[str], ...] = tuple(parts)

    def implies(self, other: Union['WildcardPermission', str]) -> bool:
        """Check whether holding this permission grants ``other``"""
        if isinstance(other, str):
            other = WildcardPermission(other)

        for i, other_part in enumerate(other.parts):
            if i >= len(self.parts):
                return True
            part = self.parts[i]
            if WILDCARD not in part and not part.issuperset(other_part):
                return False

        # Remaining parts of a longer permission must all be wildcards
        for part in self.parts[len(other.parts):]:
            if WILDCARD not in part:
                return False

        return True

    def __eq__(self, other) -> bool:
        if not isinstance(other, WildcardPermission):
            return False
        return self.parts == other.parts

    def __hash__(self) -> int:
        return hash(self.parts)

    def __repr__(self) -> str:
        return f"WildcardPermission({self.text!r})"

    def __str__(self) -> str:
        return self.text


class AuthorizationSubject(ABC):
    """
    The authenticated caller of a secured operation.

    Implementations provide identity, role membership and permission
    evaluation; the ``check_*`` helpers turn a negative answer into an
    exception.
    """

    @property
    @abstractmethod
    def principal(self) -> Optional[str]:
        """Name the subject authenticated as"""

    @property
    @abstractmethod
    def is_authenticated(self) -> bool:
        """Whether the subject currently holds a valid login"""

    @abstractmethod
    def has_role(self, role: str) -> bool:
        """Check if subject holds a role"""

    @abstractmethod
    def is_permitted(self, permission: str) -> bool:
        """Check if subject is granted a permission string"""

    def has_all_roles(self, roles: Iterable[str]) -> bool:
        return all(self.has_role(role) for role in roles)

    def is_permitted_all(self, permissions: Iterable[str]) -> bool:
        return all(self.is_permitted(p) for p in permissions)

    def check_authenticated(self) -> None:
        if not self.is_authenticated:
            raise UnauthenticatedError("The current subject is not authenticated")

    def check_role(self, role: str) -> None:
        self.check_authenticated()
        if not self.has_role(role):
            raise UnauthorizedError(f"Subject '{self.principal}' does not have role [{role}]")

    def check_permission(self, permission: str) -> None:
        self.check_authenticated()
        if not self.is_permitted(permission):
            raise UnauthorizedError(
                f"Subject '{self.principal}' is not permitted [{permission}]"
            )


class Subject(AuthorizationSubject):
    """Subject produced by SecurityManager.login"""

    def __init__(self, principal: str, roles: Iterable[str],
                 permissions: Iterable[WildcardPermission],
                 session_id: Optional[str] = None):
        self._principal = principal
        self._roles = frozenset(roles)
        self._permissions = tuple(permissions)
        self._authenticated = True
        self.session_id = session_id or str(uuid.uuid4())

    @property
    def principal(self) -> Optional[str]:
        return self._principal

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    @property
    def roles(self) -> FrozenSet[str]:
        return self._roles

    def has_role(self, role: str) -> bool:
        return self._authenticated and role in self._roles

    def is_permitted(self, permission: str) -> bool:
        if not self._authenticated:
            return False
        wanted = WildcardPermission(permission)
        return any(granted.implies(wanted) for granted in self._permissions)

    def logout(self) -> None:
        """Drop authentication; every later check on this subject fails"""
        self._authenticated = False

    def __repr__(self) -> str:
        return f"Subject(principal={self._principal!r}, roles={sorted(self._roles)})"


@dataclass
class RealmUser:
    """User account held by the realm"""
    username: str
    password_hash: str
    password_salt: str
    roles: List[str] = field(default_factory=list)


class InMemoryRealm:
    """User and role store with salted scrypt password hashes"""

    def __init__(self):
        self._users: Dict[str, RealmUser] = {}
        self._roles: Dict[str, Tuple[WildcardPermission, ...]] = {}

    # Definition

    def add_role(self, name: str, permissions: Iterable[str]) -> None:
        """Define a role and the permission strings it grants"""
        self._roles[name] = tuple(WildcardPermission(p) for p in permissions)

    def add_user(self, username: str, password: str, roles: Iterable[str] = ()) -> RealmUser:
        """Add a user; roles without a definition grant no permissions"""
        if not username:
            raise ValueError("Username cannot be empty")
        salt = self._generate_salt()
        user = RealmUser(
            username=username,
            password_hash=self._hash_password(password, salt),
            password_salt=salt,
            roles=list(roles)
        )
        self._users[username] = user
        return user

    @classmethod
    def from_definitions(cls, users: Dict[str, str], roles: Dict[str, str]) -> 'InMemoryRealm':
        """
        Build a realm from INI-style definitions.

        Args:
            users: username -> "password, role1, role2"
            roles: role name -> "permission1, permission2"
        """
        realm = cls()
        for role_name, permission_list in roles.items():
            realm.add_role(role_name, _split_list(permission_list))
        for username, definition in users.items():
            values = _split_list(definition)
            if not values:
                raise ValueError(f"User '{username}' has no password")
            realm.add_user(username, values[0], values[1:])
        return realm

    @classmethod
    def from_ini(cls, path: Union[str, Path]) -> 'InMemoryRealm':
        """Build a realm from an INI file with [users] and [roles] sections"""
        parser = configparser.ConfigParser(interpolation=None)
        parser.optionxform = str  # keep usernames and role names case-sensitive
        with open(path, encoding="utf-8") as fh:
            parser.read_file(fh)

        users = dict(parser.items("users")) if parser.has_section("users") else {}
        roles = dict(parser.items("roles")) if parser.has_section("roles") else {}
        return cls.from_definitions(users, roles)

    @classmethod
    def from_config(cls, config) -> 'InMemoryRealm':
        """Build a realm from SecureBankConfig"""
        if config.realm_file:
            return cls.from_ini(config.realm_file)
        return cls.from_definitions(config.realm_users, config.realm_roles)

    # Lookup

    def get_user(self, username: str) -> Optional[RealmUser]:
        return self._users.get(username)

    def role_names(self) -> Set[str]:
        return set(self._roles)

    def get_permissions(self, roles: Iterable[str]) -> List[WildcardPermission]:
        """Collect permissions granted by all of the given roles"""
        permissions: List[WildcardPermission] = []
        for role in roles:
            for permission in self._roles.get(role, ()):
                if permission not in permissions:
                    permissions.append(permission)
        return permissions

    def authenticate(self, username: str, password: str) -> Optional[RealmUser]:
        """Return the user when the password matches, otherwise None"""
        user = self._users.get(username)
        if user is None:
            return None
        candidate = self._hash_password(password, user.password_salt)
        if not hmac.compare_digest(candidate, user.password_hash):
            return None
        return user

    # Private helper methods

    def _generate_salt(self) -> str:
        return secrets.token_hex(16)

    def _hash_password(self, password: str, salt: str) -> str:
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()


class SecurityManager:
    """Authenticates users against a realm and hands out subjects"""

    def __init__(self, realm: InMemoryRealm, audit_trail: Optional[AuditTrail] = None):
        self.realm = realm
        self.audit_trail = audit_trail
        self.logger = get_logger("secure_bank.security")

    def login(self, username: str, password: str) -> Subject:
        """Authenticate and return a new subject; raises AuthenticationError"""
        user = self.realm.authenticate(username, password)

        if user is None:
            log_action(
                self.logger, "warning", f"Login failed for '{username}'",
                user_id=username, action="login", resource="subject"
            )
            if self.audit_trail:
                self.audit_trail.log_event(
                    AuditEventType.LOGIN_FAILED, "subject", username,
                    {"reason": "invalid_credentials"}, user_id=username
                )
            raise AuthenticationError("Invalid credentials")

        subject = Subject(
            principal=user.username,
            roles=user.roles,
            permissions=self.realm.get_permissions(user.roles)
        )

        log_action(
            self.logger, "info", f"Login succeeded for '{username}'",
            user_id=username, action="login", resource="subject",
            extra={"session_id": subject.session_id, "roles": sorted(subject.roles)}
        )
        if self.audit_trail:
            self.audit_trail.log_event(
                AuditEventType.LOGIN_SUCCESS, "subject", username,
                {"session_id": subject.session_id}, user_id=username
            )

        return subject

    def logout(self, subject: Subject) -> None:
        """Invalidate a subject's login"""
        was_authenticated = subject.is_authenticated
        subject.logout()
        if not was_authenticated:
            return

        log_action(
            self.logger, "info", f"Logout for '{subject.principal}'",
            user_id=subject.principal, action="logout", resource="subject"
        )
        if self.audit_trail:
            self.audit_trail.log_event(
                AuditEventType.LOGOUT, "subject", subject.principal,
                {"session_id": subject.session_id}, user_id=subject.principal
            )


def _split_list(value: str) -> List[str]:
    """
    Split a comma-separated definition, dropping blanks.

    Double quotes protect permissions that carry their own commas,
    e.g. ``"bankAccount:operate,read", bankAccount:create``.
    """
    items = next(csv.reader([value], skipinitialspace=True), [])
    return [item.strip() for item in items if item.strip()]
