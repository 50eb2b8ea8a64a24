# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Synchronization of local groups with provider roles."""

import logging
from collections.abc import Collection, Set
from dataclasses import dataclass
from typing import Protocol

from django.contrib.auth.models import Group

from guildgate.db.models import User
from guildgate.server.signon.role_mapping import RoleGroupMapping

log = logging.getLogger("guildgate.server.signon")


@dataclass(frozen=True)
class GroupDiff:
    """Changes needed to bring a user's groups in line with their roles."""

    added: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()

    def __bool__(self) -> bool:
        """Check if there are any changes."""
        return bool(self.added or self.removed)

    def apply(self, current: Set[str]) -> frozenset[str]:
        """Return the group names resulting from applying the diff."""
        return frozenset((current | self.added) - self.removed)


def compute_diff(
    current: Set[str], target: Set[str], managed: Set[str]
) -> GroupDiff:
    """
    Compute the changes between current and target groups.

    Groups outside ``managed`` are never removed.
    """
    return GroupDiff(
        added=frozenset(target - current),
        removed=frozenset((current & managed) - target),
    )


class GroupStore(Protocol):
    """Storage of group memberships."""

    def add(self, user: User, group_name: str) -> None:
        """Add user to the named group."""

    def remove(self, user: User, group_name: str) -> None:
        """Remove user from the named group."""


class DatabaseGroupStore:
    """Store group memberships in django.contrib.auth groups."""

    def add(self, user: User, group_name: str) -> None:
        """Add user to the named group, creating the group if needed."""
        group, created = Group.objects.get_or_create(name=group_name)
        if created:
            log.info("created group %r", group_name)
        user.groups.add(group)

    def remove(self, user: User, group_name: str) -> None:
        """Remove user from the named group."""
        try:
            group = Group.objects.get(name=group_name)
        except Group.DoesNotExist:
            return
        user.groups.remove(group)


class GroupReconciler:
    """Apply group differences to a group store."""

    def __init__(self, store: GroupStore | None = None) -> None:
        """Use the given store, or the database by default."""
        self.store: GroupStore = store or DatabaseGroupStore()

    def reconcile(
        self,
        user: User,
        current: Set[str],
        target: Set[str],
        managed: Set[str],
    ) -> GroupDiff:
        """
        Bring the groups of user from current to target.

        The store is called once for each group that changes.
        """
        diff = compute_diff(current, target, managed)
        log.debug(
            "%s: group sync: current=%s target=%s added=%s removed=%s",
            user,
            sorted(current),
            sorted(target),
            sorted(diff.added),
            sorted(diff.removed),
        )
        for name in sorted(diff.added):
            self.store.add(user, name)
            log.info("%s: added to group %r", user, name)
        for name in sorted(diff.removed):
            self.store.remove(user, name)
            log.info("%s: removed from group %r", user, name)
        return diff

    def sync(
        self,
        user: User,
        roles: Collection[str],
        mapping: RoleGroupMapping,
    ) -> GroupDiff:
        """Synchronize the groups of user with the given provider roles."""
        return self.reconcile(
            user,
            user.group_names(),
            mapping.target_groups(roles),
            mapping.managed_groups(),
        )
