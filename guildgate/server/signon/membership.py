# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""
Audit of guild membership for all linked local accounts.

Membership is looked up with the bot credentials of the provider, and
lookups run concurrently in a thread pool. Only the HTTP requests run in the
pool: all database access happens in the calling thread.
"""

import logging
from collections.abc import Collection
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from django.conf import settings
from django.db import transaction

from guildgate.db.models import Identity, User
from guildgate.server.signon.discord import DiscordBotClient
from guildgate.server.signon.exceptions import (
    FailureReason,
    NotMember,
    UpstreamError,
)
from guildgate.server.signon.group_sync import (
    GroupDiff,
    GroupReconciler,
    compute_diff,
)
from guildgate.server.signon.models import MembershipRecord
from guildgate.server.signon.providers import DiscordProvider

log = logging.getLogger("guildgate.server.signon")

#: Default number of concurrent membership lookups
DEFAULT_MAX_WORKERS = 8


@dataclass
class MembershipStatus:
    """Membership status of a linked local account."""

    user: User
    identity: Identity
    #: Roles of the user in the guild, empty if not a member
    roles: frozenset[str]
    #: True if the membership has been verified
    verified: bool
    #: True if the user passes the access policy
    has_access: bool
    #: Reason why access is refused, None if has_access is True
    reason: FailureReason | None
    #: Groups the roles map to
    expected_groups: frozenset[str]
    #: Groups the user is currently in
    current_groups: frozenset[str]
    #: Groups managed by the role mapping
    managed_groups: frozenset[str] = field(repr=False)
    #: True if the provider could not be queried about this account
    lookup_failed: bool = False

    @property
    def external_id(self) -> str:
        """Return the remote user id."""
        return self.identity.subject

    @property
    def external_username(self) -> str:
        """Return the remote user name recorded when the link was made."""
        return str(self.identity.claims.get("username", ""))

    @property
    def disabled(self) -> bool:
        """Check if the local account is disabled."""
        return not self.user.is_active

    @property
    def pending_diff(self) -> GroupDiff:
        """Return the group changes a sync would apply."""
        return compute_diff(
            self.current_groups, self.expected_groups, self.managed_groups
        )

    @property
    def in_sync(self) -> bool:
        """Check if the groups of the user match their roles."""
        return not self.pending_diff


@dataclass
class AuditReport:
    """Result of a membership audit."""

    provider: DiscordProvider
    #: Status of each linked account, sorted by user name
    statuses: list[MembershipStatus]
    #: Local accounts not linked to the provider
    unlinked: list[User]
    #: Names of the guild roles, by id
    role_names: dict[str, str]

    def role_name(self, role_id: str) -> str:
        """Return the name of a role, or its id if the name is unknown."""
        return self.role_names.get(role_id, role_id)

    @property
    def without_access(self) -> list[MembershipStatus]:
        """
        Return the active accounts that fail the access policy.

        Accounts whose lookup failed are left out: the provider did not say
        whether they lost access.
        """
        return [
            s
            for s in self.statuses
            if not s.has_access and not s.disabled and not s.lookup_failed
        ]

    @property
    def lookup_failures(self) -> list[MembershipStatus]:
        """Return the accounts whose membership lookup failed."""
        return [s for s in self.statuses if s.lookup_failed]


class MembershipAudit:
    """Check guild membership of all accounts linked to a provider."""

    def __init__(
        self,
        provider: DiscordProvider,
        client: DiscordBotClient | None = None,
        max_workers: int | None = None,
    ) -> None:
        """
        Prepare an audit.

        :param provider: provider to audit
        :param client: bot client to use; by default, it is created from the
                       provider configuration
        :param max_workers: maximum number of concurrent lookups; by default,
                            use ``SIGNON_AUDIT_MAX_WORKERS``
        """
        self.provider = provider
        self.client = client or provider.bot_client()
        if max_workers is None:
            max_workers = getattr(
                settings, "SIGNON_AUDIT_MAX_WORKERS", DEFAULT_MAX_WORKERS
            )
        self.max_workers = max_workers

    def fetch_role_names(self) -> dict[str, str]:
        """Fetch guild role names, or an empty dict if they are unavailable."""
        try:
            return self.client.fetch_group_roles(self.provider.guild_id)
        except UpstreamError as e:
            log.warning("%s: role names unavailable: %s", self.provider, e)
            return {}

    def fetch_memberships(
        self, external_ids: Collection[str]
    ) -> dict[str, MembershipRecord | NotMember]:
        """
        Look up the membership of the given remote users.

        :return: a dict mapping each id to its membership record, or to the
                 NotMember error raised by its lookup
        """
        results: dict[str, MembershipRecord | NotMember] = {}
        if not external_ids:
            return results
        with ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="membership-audit",
        ) as executor:
            futures = {
                external_id: executor.submit(
                    self.client.fetch_membership_as_admin,
                    self.provider.guild_id,
                    external_id,
                )
                for external_id in external_ids
            }
            for external_id, future in futures.items():
                try:
                    results[external_id] = future.result()
                except NotMember as e:
                    results[external_id] = e
        return results

    def run(self) -> AuditReport:
        """Run the audit."""
        identities = list(
            Identity.objects.filter(issuer=self.provider.issuer)
            .select_related("user")
            .prefetch_related("user__groups")
            .order_by("user__username")
        )
        role_names = self.fetch_role_names()
        memberships = self.fetch_memberships(
            [identity.subject for identity in identities]
        )
        mapping = self.provider.role_to_group
        managed = mapping.managed_groups()

        statuses: list[MembershipStatus] = []
        for identity in identities:
            user = identity.user
            result = memberships.get(identity.subject)
            membership = (
                result if isinstance(result, MembershipRecord) else None
            )
            lookup_failed = (
                isinstance(result, NotMember) and result.lookup_failed
            )
            roles = membership.roles if membership else frozenset()
            reason: FailureReason | None = None
            if lookup_failed:
                reason = FailureReason.UPSTREAM_UNAVAILABLE
            elif membership is None:
                reason = FailureReason.NOT_MEMBER
            elif not self.provider.is_allowed(roles):
                reason = FailureReason.ROLE_NOT_ALLOWED
            statuses.append(
                MembershipStatus(
                    user=user,
                    identity=identity,
                    roles=roles,
                    verified=membership is not None,
                    has_access=reason is None,
                    reason=reason,
                    expected_groups=mapping.target_groups(roles),
                    current_groups=frozenset(
                        group.name for group in user.groups.all()
                    ),
                    managed_groups=managed,
                    lookup_failed=lookup_failed,
                )
            )

        unlinked = list(
            User.objects.unlinked(self.provider.issuer).order_by("username")
        )
        return AuditReport(
            provider=self.provider,
            statuses=statuses,
            unlinked=unlinked,
            role_names=role_names,
        )

    def sync(
        self,
        report: AuditReport,
        reconciler: GroupReconciler | None = None,
    ) -> dict[User, GroupDiff]:
        """
        Synchronize groups of the audited accounts.

        Accounts whose membership could not be verified are skipped, so that
        a lookup failure does not strip their groups.

        :return: the changes applied, for each user that changed
        """
        reconciler = reconciler or GroupReconciler()
        changes: dict[User, GroupDiff] = {}
        if not self.provider.role_to_group:
            return changes
        for status in report.statuses:
            if not status.verified:
                continue
            with transaction.atomic():
                diff = reconciler.reconcile(
                    status.user,
                    status.current_groups,
                    status.expected_groups,
                    status.managed_groups,
                )
            if diff:
                changes[status.user] = diff
                status.current_groups = diff.apply(status.current_groups)
        return changes

    def deactivate(self, report: AuditReport) -> list[User]:
        """
        Disable the local accounts that fail the access policy.

        Accounts whose membership lookup failed are never disabled.

        :return: the accounts that have been disabled
        """
        disabled: list[User] = []
        for status in report.without_access:
            status.user.is_active = False
            status.user.save(update_fields=["is_active"])
            log.info(
                "%s: disabled: %s", status.user, status.reason or "no access"
            )
            disabled.append(status.user)
        return disabled
