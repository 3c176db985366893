"""
auth/access.py -- Capability evaluator: may this account do X to Y?

Each role maps to an immutable Policy: an ordered tuple of Rules. can() walks
the tuple and the first rule that matches (action, resource, condition)
decides. No match means deny. super_admin never reaches the table -- it is
allowed everything.

Matching:
  - An ALLOW rule that lists MANAGE covers every action on its resource.
  - A request for MANAGE itself only matches rules that list MANAGE.
  - DENY rules match literally, so "deny manage role" blocks only manage
    requests. Deny rules sit at the top of a policy, ahead of the grants.

Instance conditions are plain named predicates taking (account, instance).
The instance may be a dataclass/object or a mapping. A type-level check
(instance=None) against a conditional rule passes: the caller is asking
"could I ever update a user?", and must ask again with the concrete record
before mutating it.

Pure functions only: no I/O, no logging, no imports from the stores.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any

from auth.errors import ForbiddenError
from auth.models import Account, RoleType


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"


class Resource(str, Enum):
    USER = "user"
    ROLE = "role"
    STATION = "station"
    PRODUCT = "product"
    INVENTORY = "inventory"
    SETTINGS = "settings"
    REPORT = "report"


class Effect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


Condition = Callable[[Account, Any], bool]


# ---------------------------------------------------------------------------
# Instance predicates
# ---------------------------------------------------------------------------


def _field(instance: Any, name: str) -> Any:
    if isinstance(instance, Mapping):
        return instance.get(name)
    return getattr(instance, name, None)


def is_self(account: Account, instance: Any) -> bool:
    """The instance is the acting account's own user record."""
    return account.id is not None and _field(instance, "id") == account.id


def manages_station(account: Account, instance: Any) -> bool:
    """The instance is a station whose manager is the acting account."""
    return account.id is not None and _field(instance, "manager_id") == account.id


# ---------------------------------------------------------------------------
# Rules and policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rule:
    effect: Effect
    actions: frozenset[Action]
    resource: Resource
    condition: Condition | None = None

    def matches(self, account: Account, action: Action, resource: Resource, instance: Any) -> bool:
        if resource is not self.resource:
            return False
        if action not in self.actions and not (self.effect is Effect.ALLOW and Action.MANAGE in self.actions):
            return False
        if self.condition is None or instance is None:
            return True
        return self.condition(account, instance)


@dataclass(frozen=True)
class Policy:
    role: RoleType
    rules: tuple[Rule, ...] = ()
    allow_all: bool = False

    def decide(self, account: Account, action: Action, resource: Resource, instance: Any = None) -> bool:
        if self.allow_all:
            return True
        for rule in self.rules:
            if rule.matches(account, action, resource, instance):
                return rule.effect is Effect.ALLOW
        return False


def _allow(actions, resource: Resource, condition: Condition | None = None) -> Rule:
    return Rule(Effect.ALLOW, frozenset(actions), resource, condition)


def _deny(actions, resource: Resource) -> Rule:
    return Rule(Effect.DENY, frozenset(actions), resource)


_C, _R, _U, _D, _M = Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE, Action.MANAGE

_RULES: dict[RoleType, tuple[Rule, ...]] = {
    RoleType.ADMIN: (
        _deny({_C, _U, _D, _M}, Resource.ROLE),
        _allow({_C, _R, _U, _D}, Resource.USER),
        _allow({_R}, Resource.ROLE),
        _allow({_M}, Resource.STATION),
        _allow({_M}, Resource.PRODUCT),
        _allow({_M}, Resource.INVENTORY),
        _allow({_M}, Resource.SETTINGS),
        _allow({_C, _R}, Resource.REPORT),
    ),
    RoleType.MANAGER: (
        _allow({_R}, Resource.USER),
        _allow({_U}, Resource.USER, is_self),
        _allow({_R}, Resource.STATION),
        _allow({_U}, Resource.STATION, manages_station),
        _allow({_R}, Resource.PRODUCT),
        _allow({_R, _U}, Resource.INVENTORY),
        _allow({_R}, Resource.SETTINGS),
        _allow({_C, _R}, Resource.REPORT),
    ),
    RoleType.STAFF: (
        _allow({_R, _U}, Resource.USER, is_self),
        _allow({_R}, Resource.STATION),
        _allow({_R}, Resource.PRODUCT),
        _allow({_R, _U}, Resource.INVENTORY),
        _allow({_R}, Resource.SETTINGS),
        _allow({_R}, Resource.REPORT),
    ),
    RoleType.USER: (_allow({_R, _U}, Resource.USER, is_self),),
    RoleType.GUEST: (_allow({_R}, Resource.SETTINGS),),
}


@lru_cache(maxsize=None)
def policy_for(role: RoleType) -> Policy:
    role = RoleType(role)
    if role is RoleType.SUPER_ADMIN:
        return Policy(role=role, allow_all=True)
    return Policy(role=role, rules=_RULES.get(role, ()))


def can(account: Account, action: Action | str, resource: Resource | str, instance: Any = None) -> bool:
    """Evaluate one capability for the acting account."""
    return policy_for(account.role.name).decide(account, Action(action), Resource(resource), instance)


def ensure_can(account: Account, action: Action | str, resource: Resource | str, instance: Any = None) -> None:
    """Raise ForbiddenError unless can() allows the action."""
    if not can(account, action, resource, instance):
        raise ForbiddenError()


def allowed_actions(account: Account, resource: Resource | str) -> list[Action]:
    """Type-level actions the account may attempt on a resource (for UI hints)."""
    return [a for a in Action if can(account, a, resource)]
