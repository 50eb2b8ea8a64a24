# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""guildgate-admin command to audit guild membership of linked accounts."""

from typing import Any, NoReturn

import yaml
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.management import CommandError, CommandParser

from guildgate.django.management.guildgate_base_command import (
    GuildgateBaseCommand,
)
from guildgate.server.management.management_utils import (
    MembershipStatuses,
    Users,
)
from guildgate.server.signon import providers
from guildgate.server.signon.membership import MembershipAudit


class Command(GuildgateBaseCommand):
    """Command to audit guild membership of linked accounts."""

    help = (
        "Check guild membership of all accounts linked to a provider,"
        " optionally synchronizing their groups or disabling the accounts"
        " that lost access."
    )

    def add_arguments(self, parser: CommandParser) -> None:
        """Add CLI arguments for the check_membership command."""
        parser.add_argument(
            "--provider",
            help="Name of the provider to check."
            " Defaults to the only configured Discord provider",
        )
        parser.add_argument(
            "--yaml", action="store_true", help="Machine readable YAML output"
        )
        parser.add_argument(
            "--sync",
            action="store_true",
            help="Synchronize groups of accounts whose membership was verified",
        )
        parser.add_argument(
            "--deactivate",
            action="store_true",
            help="Disable accounts that fail the access check",
        )

    def get_provider(self, name: str | None) -> providers.DiscordProvider:
        """Look up the provider to audit."""
        if name is None:
            candidates = [
                p
                for p in getattr(settings, "SIGNON_PROVIDERS", ())
                if isinstance(p, providers.DiscordProvider)
            ]
            if len(candidates) != 1:
                raise CommandError(
                    f"{len(candidates)} Discord providers configured:"
                    " use --provider to choose one",
                    returncode=3,
                )
            return candidates[0]

        try:
            provider = providers.get(name)
        except ImproperlyConfigured as e:
            raise CommandError(str(e), returncode=3)
        if not isinstance(provider, providers.DiscordProvider):
            raise CommandError(
                f"provider {name!r} is not a Discord provider", returncode=3
            )
        return provider

    def handle(self, *args: Any, **options: Any) -> NoReturn:
        """Run the audit and print its results."""
        provider = self.get_provider(options["provider"])
        if not provider.bot_token:
            raise CommandError(
                f"provider {provider.name!r} has no bot_token configured",
                returncode=3,
            )

        audit = MembershipAudit(provider)
        report = audit.run()
        for status in report.lookup_failures:
            self.stderr.write(
                f"{status.user}: membership lookup failed,"
                " account left unchanged"
            )

        synced = {}
        if options["sync"]:
            synced = audit.sync(report)
            for user, diff in synced.items():
                self.print_verbose(
                    f"{user}: added {sorted(diff.added)},"
                    f" removed {sorted(diff.removed)}"
                )

        deactivated = []
        if options["deactivate"]:
            deactivated = audit.deactivate(report)
            for user in deactivated:
                self.print_verbose(f"{user}: disabled")

        statuses = MembershipStatuses(options["yaml"], report.role_names)
        unlinked = Users(options["yaml"])
        if options["yaml"]:
            data = {
                "linked": statuses.to_data(report.statuses),
                "unlinked": unlinked.to_data(report.unlinked),
                "synced": sorted(user.username for user in synced),
                "deactivated": sorted(user.username for user in deactivated),
            }
            print(yaml.dump(data), file=self.stdout)
        else:
            statuses.print(report.statuses, self.stdout)
            if report.unlinked:
                unlinked.print(report.unlinked, self.stdout)

        raise SystemExit(0)
