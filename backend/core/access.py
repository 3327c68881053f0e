"""
Access-control gate.

evaluate_access() is the single place that decides whether a user may reach
a route or endpoint. It returns an explicit decision object:

- Allow(ADMIN_OVERRIDE) for admins, who bypass every role and permission check
- Allow(GRANTED) when the required roles and permissions are satisfied
- Deny(...) naming what is missing and where the caller should be sent

RoleRequired wraps the gate as a DRF permission class for the API, and
RouteGuard drives navigation-side checks (dashboard route changes).
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from rest_framework.permissions import BasePermission

from .roles import ADMIN, permissions_for_role

logger = logging.getLogger('backend.core.access')

LOGIN_ROUTE = '/login'
FALLBACK_ROUTE = '/dashboard'


class AllowReason(str, Enum):
    ADMIN_OVERRIDE = 'admin_override'
    GRANTED = 'granted'


@dataclass(frozen=True)
class Allow:
    reason: AllowReason
    allowed: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Deny:
    reason: str
    missing_roles: tuple = ()
    missing_permissions: tuple = ()
    redirect_to: str = FALLBACK_ROUTE
    authenticated: bool = True
    allowed: bool = field(default=False, init=False)


def _as_tuple(value):
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def user_permissions(user):
    """Effective permission set for any user-like object (model instance or token identity)"""
    if hasattr(user, 'effective_permissions'):
        return set(user.effective_permissions)
    granted = set(permissions_for_role(getattr(user, 'role', None)))
    granted.update(getattr(user, 'permissions', None) or [])
    return granted


def is_authenticated(user):
    return user is not None and bool(getattr(user, 'is_authenticated', False))


def evaluate_access(user, required_roles=(), required_permissions=()):
    """Decide whether `user` satisfies the role and permission requirements"""
    required_roles = _as_tuple(required_roles)
    required_permissions = _as_tuple(required_permissions)

    if not is_authenticated(user):
        return Deny(
            reason='Authentication required.',
            missing_roles=required_roles,
            missing_permissions=required_permissions,
            redirect_to=LOGIN_ROUTE,
            authenticated=False,
        )

    role = getattr(user, 'role', None)
    if role == ADMIN:
        return Allow(AllowReason.ADMIN_OVERRIDE)

    if required_roles and role not in required_roles:
        return Deny(
            reason=f'Requires role: {", ".join(required_roles)} (current role: {role or "none"}).',
            missing_roles=required_roles,
        )

    granted = user_permissions(user)
    missing = tuple(p for p in required_permissions if p not in granted)
    if missing:
        return Deny(
            reason=f'Missing permission: {", ".join(missing)}.',
            missing_permissions=missing,
        )

    return Allow(AllowReason.GRANTED)


def decision_to_dict(decision):
    if decision.allowed:
        return {'allowed': True, 'reason': decision.reason.value}
    return {
        'allowed': False,
        'reason': decision.reason,
        'missing_roles': list(decision.missing_roles),
        'missing_permissions': list(decision.missing_permissions),
        'redirect_to': decision.redirect_to,
    }


class RoleRequired(BasePermission):
    """
    DRF permission backed by evaluate_access().

    Use RoleRequired.with_requirements(roles=[...], permissions=[...]) in
    @permission_classes. Unauthenticated requests get 401, everything else
    that is denied gets 403 with the decision's reason.
    """
    required_roles = ()
    required_permissions = ()

    @classmethod
    def with_requirements(cls, roles=(), permissions=()):
        return type(
            'RoleRequired',
            (cls,),
            {
                'required_roles': _as_tuple(roles),
                'required_permissions': _as_tuple(permissions),
            },
        )

    def has_permission(self, request, view):
        decision = evaluate_access(request.user, self.required_roles, self.required_permissions)
        if not decision.allowed:
            self.message = decision.reason
            if decision.authenticated:
                logger.info(
                    f'Access denied for {request.user.username} on {request.path}: {decision.reason}'
                )
            return False
        return True


def role_required(*roles, permissions=()):
    return RoleRequired.with_requirements(roles=roles, permissions=permissions)


def permission_required(*permissions):
    return RoleRequired.with_requirements(permissions=permissions)


IsAdminRole = role_required(ADMIN)


@dataclass(frozen=True)
class Route:
    path: str
    required_roles: tuple = ()
    required_permissions: tuple = ()


@dataclass(frozen=True)
class Notice:
    title: str
    description: str


def identity_key(user):
    """Hashable snapshot of what the gate looks at; None when anonymous"""
    if not is_authenticated(user):
        return None
    return (
        getattr(user, 'pk', None) or getattr(user, 'id', None),
        getattr(user, 'role', None),
        tuple(sorted(user_permissions(user))),
    )


class RouteGuard:
    """
    Navigation-side guard.

    update() is called whenever the current route or the identity changes.
    Nothing happens while the identity is still loading, and each
    (route, identity) pair is evaluated at most once. On deny the guard emits
    a notice through `notify` and navigates to the decision's redirect.
    """

    def __init__(self, notify: Callable[[Notice], None], navigate: Callable[[str], None],
                 login_route: str = LOGIN_ROUTE):
        self.notify = notify
        self.navigate = navigate
        self.login_route = login_route
        self.last_decision = None
        self._evaluated_key = None

    def update(self, route: Route, user, loading: bool = False) -> Optional[object]:
        if loading:
            return None

        key = (route, identity_key(user))
        if key == self._evaluated_key:
            return None
        self._evaluated_key = key

        decision = evaluate_access(user, route.required_roles, route.required_permissions)
        self.last_decision = decision
        if decision.allowed:
            return decision

        if not decision.authenticated:
            self.notify(Notice('Authentication Required', 'Please log in to access this page.'))
            self.navigate(self.login_route)
        elif decision.missing_roles:
            self.notify(Notice('Access Denied', "You don't have permission to access this page."))
            self.navigate(decision.redirect_to)
        else:
            self.notify(Notice('Access Denied', "You don't have the required permissions for this page."))
            self.navigate(decision.redirect_to)
        return decision
