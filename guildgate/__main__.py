# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Django-based command-line utility for administrative tasks."""

import os
import sys

from django.core.exceptions import ImproperlyConfigured


def main() -> None:
    """Run a management command."""
    os.environ.setdefault(
        "DJANGO_SETTINGS_MODULE", "guildgate.project.settings"
    )

    # Must only be imported after DJANGO_SETTINGS_MODULE is set.
    try:
        from django.core.management import execute_from_command_line
    except ImportError as exc:  # pragma: no cover
        raise ImportError(
            "Couldn't import Django. Are you sure it's installed and "
            "available on your PYTHONPATH environment variable? Did you "
            "forget to activate a virtual environment?"
        ) from exc

    try:
        execute_from_command_line(sys.argv)
    except ImproperlyConfigured as exc:
        print("Improperly configured error:", exc, file=sys.stderr)
        sys.exit(3)


if __name__ == "__main__":
    main()
