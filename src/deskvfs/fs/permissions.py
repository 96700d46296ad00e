"""Group and read-only gates applied before any adapter call."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from .exceptions import PermissionDeniedError, ReadOnlyError
from .utils import get_prefix

if TYPE_CHECKING:
    from .types import GroupRule, Mountpoint, Session

ReadOnlyIntent = bool | Callable[[Mapping[str, Any]], str | None]
"""``True`` for writes, or a function over the request fields that returns
the path being written (``copy`` writes only its destination)."""


def flatten_groups(groups: Iterable[GroupRule]) -> tuple[list[str], dict[str, list[str]]]:
    """Split group rules into always-applied names and per-method lists.

    Examples:
        flatten_groups(["admin", {"readdir": ["staff"]}])
            -> (["admin"], {"readdir": ["staff"]})
    """
    named: list[str] = []
    by_method: dict[str, list[str]] = {}
    for rule in groups:
        if isinstance(rule, str):
            named.append(rule)
        elif isinstance(rule, Mapping):
            for method, required in rule.items():
                by_method.setdefault(method, []).extend(required)
    return named, by_method


def _satisfies(required: list[str], user_groups: Iterable[str], strict: bool) -> bool:
    if not required:
        return True
    have = set(user_groups)
    if strict:
        return all(g in have for g in required)
    return any(g in have for g in required)


def validate_groups(
    user_groups: Iterable[str],
    method: str,
    mountpoint: Mountpoint,
    strict: bool | None = None,
) -> bool:
    """Check the user's groups against the mountpoint's group rules.

    ``strict`` requires every listed group, otherwise one match is enough.
    When omitted it falls back to ``attributes.strict_groups`` (default
    ``True``).  An empty rule list always passes.
    """
    groups = mountpoint.attributes.groups
    if not groups:
        return True

    if strict is None:
        strict = mountpoint.attributes.strict_groups

    user_groups = list(user_groups)
    named, by_method = flatten_groups(groups)
    named_valid = _satisfies(named, user_groups, strict)
    method_valid = _satisfies(by_method.get(method, []), user_groups, strict)
    return named_valid and method_valid


def check_read_only(ro: ReadOnlyIntent, mountpoint: Mountpoint, fields: Mapping[str, Any]) -> bool:
    """True when *ro* would write into a read-only *mountpoint*."""
    if not mountpoint.attributes.read_only:
        return False
    if callable(ro):
        target = ro(fields)
        return target is not None and get_prefix(target) == mountpoint.name
    return bool(ro)


def check_permission(
    session: Session | None,
    method: str,
    mountpoint: Mountpoint,
    ro: ReadOnlyIntent = False,
    fields: Mapping[str, Any] | None = None,
    strict: bool | None = None,
) -> bool:
    """Raise unless *session* may run *method* on *mountpoint*.

    Read-only is checked first, then group rules.  Returns ``True``.
    """
    if check_read_only(ro, mountpoint, fields or {}):
        raise ReadOnlyError(f"Mountpoint '{mountpoint.name}' is read-only")

    user = session.user if session is not None else None
    user_groups = user.groups if user is not None else []
    if not validate_groups(user_groups, method, mountpoint, strict):
        raise PermissionDeniedError(
            f"Permission was denied for '{method}' in '{mountpoint.name}'"
        )
    return True
