# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Guildgate checks using Django checks framework."""

from collections import Counter
from collections.abc import Sequence
from typing import Any

from django.apps.config import AppConfig
from django.conf import settings
from django.core.checks import CheckMessage, Error, Warning, register
from django.core.exceptions import ImproperlyConfigured


@register()
def secret_key_not_default_in_debug_0(
    app_configs: Sequence[AppConfig] | None, **kwargs: Any  # noqa: U100
) -> list[CheckMessage]:
    """Check SECRET_KEY is not the default if Debug=False (unless testing)."""
    if getattr(settings, "TEST_MODE", False):
        # In Django the tests run with settings.DEBUG = False by design.
        # When testing Guildgate it is allowed to use the default SECRET_KEY
        return []

    if not settings.DEBUG and settings.SECRET_KEY.startswith("default:"):
        return [
            Error(
                'Default SECRET_KEY cannot be used in DEBUG=False. Make sure '
                'to use "SECRET_KEY = read_secret(path)" in the local.py '
                'settings file',
                hint="Generate a secret key using the command: "
                "$ python3 -c 'from django.core.management.utils import "
                "get_random_secret_key; print(get_random_secret_key())'",
                id="guildgate.E001",
            )
        ]

    return []


@register()
def signon_providers_check(
    app_configs: Sequence[AppConfig] | None, **kwargs: Any  # noqa: U100
) -> list[CheckMessage]:
    """Check the SIGNON_PROVIDERS configuration."""
    from guildgate.server.signon.providers import DiscordProvider, Provider

    messages: list[CheckMessage] = []
    entries = getattr(settings, "SIGNON_PROVIDERS", ())

    for idx, entry in enumerate(entries):
        if not isinstance(entry, Provider):
            messages.append(
                Error(
                    f"SIGNON_PROVIDERS entry #{idx} is not a Provider:"
                    f" {entry!r}",
                    id="guildgate.E002",
                )
            )
            continue
        if isinstance(entry, DiscordProvider) and not entry.bot_token:
            messages.append(
                Warning(
                    f"signon provider {entry.name!r} has no bot_token:"
                    " membership audits will not be possible",
                    hint="Set bot_token to run check_membership",
                    id="guildgate.W001",
                )
            )

    names = Counter(
        entry.name for entry in entries if isinstance(entry, Provider)
    )
    for name, count in sorted(names.items()):
        if count > 1:
            messages.append(
                Error(
                    f"signon provider name {name!r} is used {count} times",
                    id="guildgate.E003",
                )
            )

    return messages


@register()
def signon_class_check(
    app_configs: Sequence[AppConfig] | None, **kwargs: Any  # noqa: U100
) -> list[CheckMessage]:
    """Check that SIGNON_CLASS names a Signon subclass."""
    from guildgate.server.signon.middleware import get_signon_class

    try:
        get_signon_class()
    except ImproperlyConfigured as e:
        return [Error(str(e), id="guildgate.E004")]
    return []
