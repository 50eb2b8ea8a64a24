# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""
Guildgate settings.

Defaults are loaded from :py:mod:`guildgate.project.settings.defaults`, then
overridden by ``local.py`` in this directory, if present. A typical
``local.py`` configures the secret key and the signon providers::

    from guildgate.project.project_utils import read_secret
    from guildgate.server.signon import providers

    SECRET_KEY = read_secret("/etc/guildgate/secret_key")
    ALLOWED_HOSTS = ["guildgate.example.org"]
    SIGNON_PROVIDERS = [
        providers.DiscordProvider(
            name="discord",
            label="Discord",
            client_id="123client_id",
            client_secret=read_secret("/etc/guildgate/discord_secret"),
            guild_id="81384788765712384",
        ),
    ]
"""

from guildgate.project.settings.defaults import *  # noqa: F401, F403

try:
    from guildgate.project.settings.local import *  # noqa: F401, F403
except ModuleNotFoundError as exc:
    if exc.name != "guildgate.project.settings.local":
        raise
