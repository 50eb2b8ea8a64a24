# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Tests for common Django utility code."""

import io
from contextlib import redirect_stderr, redirect_stdout
from typing import Any

from django.core.management import call_command as django_call_command


def call_command(
    cmd: str, *args: str, verbosity: int = 0, **kwargs: Any
) -> tuple[str, str, int | str]:
    """
    Call command cmd with arguments, capturing its output and exit code.

    Return tuple with:
    - stdout's of the command
    - stderr's of the command
    - exit_code of the command or the string "command did not raise SystemExit \
      or call sys.exit"
    """
    stdout = io.StringIO()
    stderr = io.StringIO()
    exit_code: int | str = "command did not raise SystemExit or call sys.exit"

    try:
        with redirect_stderr(stderr), redirect_stdout(stdout):
            django_call_command(
                cmd,
                *args,
                **kwargs,
                verbosity=verbosity,
                stdout=stdout,
                stderr=stderr,
            )
    except SystemExit as exc:
        exit_code = 0 if exc.code is None else exc.code

    return stdout.getvalue(), stderr.getvalue(), exit_code
