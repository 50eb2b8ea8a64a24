# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""GuildgateBaseCommand extends BaseCommand with extra functionality."""

import signal
import types
from typing import Any, NoReturn

from django.core.management import BaseCommand, CommandError
from django.db.utils import DatabaseError


class GuildgateBaseCommand(BaseCommand):
    """Extend Django Base Command with functionality used by Guildgate."""

    @staticmethod
    def _exit_handler(signum: int, frame: types.FrameType | None) -> NoReturn:
        """
        Exit without printing Python's default stack trace.

        Interrupting a long membership audit with Control+C should not
        print a stack trace.
        """
        signum, frame  # fake usage for vulture
        raise SystemExit(3)

    def execute(self, *args: Any, **options: Any) -> None:
        """
        Guildgate BaseCommand common functionality.

        - Catch DatabaseError exceptions to print a helpful message
        - Set self.verbosity for --verbosity/-v option

        Possible DatabaseErrors: database not reachable, invalid database
        credentials, etc.
        """
        try:
            signal.signal(signal.SIGINT, self._exit_handler)
            signal.signal(signal.SIGTERM, self._exit_handler)

            self.verbosity = options["verbosity"]

            super().execute(*args, **options)
        except DatabaseError as exc:
            raise CommandError(f"Database error: {exc}", returncode=3)

    def print_verbose(self, msg: str) -> None:
        r"""Write msg + "\n" to self.stdout if self.verbosity > 1."""
        if self.verbosity > 1:
            self.stdout.write(msg)
