# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Utilities used by guildgate.project settings."""

import os

from django.core.exceptions import ImproperlyConfigured


def read_secret(secret_file: str | os.PathLike[str]) -> str:
    """
    Return the stripped content of secret_file.

    This is used in local settings to load the Django secret key and the
    provider credentials (client secret, bot token) from files readable only
    by their owner.

    :raises ImproperlyConfigured: if the file cannot be read, is readable by
                                  group or others, or is empty
    """
    try:
        if bool(os.stat(secret_file).st_mode & 0o077):
            raise ImproperlyConfigured(
                f'Permission too open for {secret_file}. '
                'Make sure that the file is not accessible by '
                'group or others'
            )
        with open(secret_file) as f:
            secret = f.read().strip()
    except OSError as exc:
        raise ImproperlyConfigured(f"Cannot read {secret_file}: {exc}")

    if not secret:
        raise ImproperlyConfigured(f"{secret_file} is empty")
    return secret
