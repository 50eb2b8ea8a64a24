# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""
Mapping of provider roles to local groups.

A mapping can be configured in two equivalent ways. As a dict::

    role_to_group={
        "1234": "editor",
        "5678": ["editor", "reviewer"],
    }

Or as a list of pairs, where repeated roles are merged::

    role_to_group=[
        {"role": "1234", "group": "editor"},
        {"role": "5678", "group": "editor"},
        {"role": "5678", "group": "reviewer"},
    ]

Role ids are always handled as strings. Integer role ids are accepted in
configuration and converted exactly; floating point and boolean values are
rejected, since they cannot represent large ids faithfully.
"""

from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Self

from guildgate.server.signon.exceptions import MappingConfigInvalid

#: Maximum length of a group name, as in django.contrib.auth.models.Group
GROUP_NAME_MAX_LENGTH = 150

CanonicalMapping = dict[str, frozenset[str]]


def _role_id(value: Any) -> str:
    """Validate and normalize a role id."""
    # bool is a subclass of int, and needs to be rejected explicitly
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise MappingConfigInvalid(
            f"role id {value!r} must be a string or an integer"
        )
    role = str(value).strip()
    if not role:
        raise MappingConfigInvalid("role id cannot be empty")
    return role


def _group_names(role: str, value: Any) -> frozenset[str]:
    """Validate and normalize the group names a role maps to."""
    names: Iterable[Any]
    if isinstance(value, str):
        names = (value,)
    elif isinstance(value, (list, tuple, set, frozenset)):
        names = value
    else:
        raise MappingConfigInvalid(
            f"groups for role {role!r} must be a string or a list of strings,"
            f" not {value!r}"
        )

    result: set[str] = set()
    for name in names:
        if not isinstance(name, str) or not name.strip():
            raise MappingConfigInvalid(
                f"invalid group name {name!r} for role {role!r}"
            )
        if len(name) > GROUP_NAME_MAX_LENGTH:
            raise MappingConfigInvalid(
                f"group name {name!r} for role {role!r} is longer than"
                f" {GROUP_NAME_MAX_LENGTH} characters"
            )
        result.add(name)
    return frozenset(result)


def _merge(
    mapping: CanonicalMapping, role: str, groups: frozenset[str]
) -> None:
    if groups:
        mapping[role] = mapping.get(role, frozenset()) | groups


def normalize_mapping(raw: Any) -> CanonicalMapping:
    """
    Normalize a role to group mapping from configuration.

    :param raw: None, a dict, or a list of ``{"role": ..., "group": ...}``
                dicts
    :return: a dict mapping role ids to non-empty sets of group names
    :raises MappingConfigInvalid: if raw is malformed
    """
    result: CanonicalMapping = {}
    if raw is None:
        return result

    if isinstance(raw, Mapping):
        for key, value in raw.items():
            role = _role_id(key)
            _merge(result, role, _group_names(role, value))
        return result

    if isinstance(raw, (list, tuple)):
        for idx, entry in enumerate(raw):
            if not isinstance(entry, Mapping) or set(entry.keys()) != {
                "role",
                "group",
            }:
                raise MappingConfigInvalid(
                    f"mapping entry #{idx} must be a dict with exactly"
                    f" 'role' and 'group' keys, not {entry!r}"
                )
            role = _role_id(entry["role"])
            _merge(result, role, _group_names(role, entry["group"]))
        return result

    raise MappingConfigInvalid(
        f"role to group mapping must be a dict or a list, not {raw!r}"
    )


def target_groups(
    roles: Collection[str], mapping: Mapping[str, frozenset[str]]
) -> frozenset[str]:
    """Return the groups that a user with the given roles should be in."""
    result: set[str] = set()
    for role in roles:
        result.update(mapping.get(role, ()))
    return frozenset(result)


def managed_groups(mapping: Mapping[str, frozenset[str]]) -> frozenset[str]:
    """Return all the groups whose membership is driven by the mapping."""
    result: set[str] = set()
    for groups in mapping.values():
        result.update(groups)
    return frozenset(result)


@dataclass(frozen=True)
class RoleGroupMapping:
    """Immutable, normalized role to group mapping."""

    roles: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def parse(cls, raw: Any) -> Self:
        """
        Build a mapping from configuration.

        :raises MappingConfigInvalid: if raw is malformed
        """
        return cls(roles=MappingProxyType(normalize_mapping(raw)))

    def __bool__(self) -> bool:
        """Check if the mapping has any entries."""
        return bool(self.roles)

    def __eq__(self, other: object) -> bool:
        """Compare the normalized mappings."""
        if not isinstance(other, RoleGroupMapping):
            return NotImplemented
        return dict(self.roles) == dict(other.roles)

    def __hash__(self) -> int:
        """Hash the normalized mapping."""
        return hash(frozenset(self.roles.items()))

    def target_groups(self, roles: Collection[str]) -> frozenset[str]:
        """Return the groups that a user with the given roles should be in."""
        return target_groups(roles, self.roles)

    def managed_groups(self) -> frozenset[str]:
        """Return all the groups whose membership is driven by the mapping."""
        return managed_groups(self.roles)
