# Copyright 2020-2023 Enrico Zini <enrico@debian.org>
# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""
Support for external signon providers.

This is configured by the SIGNON_PROVIDERS variable in django settings.

SIGNON_PROVIDERS is expected to be a sequence of `Provider` instances, one for
each supported signon provider.

Example::

    SIGNON_PROVIDERS=[
        providers.DiscordProvider(
            name="discord",
            label="Discord",
            client_id="123client_id",
            client_secret="123client_secret",
            guild_id="81384788765712384",
            allowed_roles=["81384788765712385"],
            auto_create=True,
            group_sync="always",
            role_to_group={
                "81384788765712385": "editor",
                "81384788765712386": ["editor", "admin"],
            },
            bot_token="123bot_token",
        ),
    ]

``allowed_roles`` restricts login to guild members having at least one of the
listed roles. If it is empty, any guild member can log in.

``group_sync`` decides when local groups are synchronized with the roles
mapped by ``role_to_group``:

* ``always``: on every login
* ``disabled``: never
* any other value: only when the local account is created, and when requested
  with ``guildgate-admin check_membership --sync``

``bot_token`` is only needed by ``guildgate-admin check_membership``.
"""

from collections.abc import Collection
from enum import StrEnum
from typing import Any, TYPE_CHECKING

from guildgate.server.signon.role_mapping import RoleGroupMapping

if TYPE_CHECKING:  # pragma: no cover
    import django.http

    from guildgate.server.signon.discord import DiscordBotClient, DiscordClient

# Note: this module is supposed to be imported from settings.py
#
# Its module-level import list for the case of defining providers should be
# kept accordingly minimal

#: Root of the Discord API
DISCORD_API_URL = "https://discord.com/api/v10"

#: Default timeout in seconds for requests to the provider
DEFAULT_TIMEOUT = 10.0


def get(name: str) -> "Provider":
    """
    Look up a provider by name.

    :param name: name of the provider to look up, matching Provider.name
    :raises ImproperlyConfigured: if no provider with that name has been
                                  defined in settings
    :return: the Provider instance
    """
    from django.conf import settings
    from django.core.exceptions import ImproperlyConfigured

    providers = getattr(settings, "SIGNON_PROVIDERS", None)
    if providers is None:
        raise ImproperlyConfigured(
            f"signon provider {name} requested,"
            " but SIGNON_PROVIDERS is not defined in settings"
        )

    for p in providers:
        if p.name == name:
            if not isinstance(p, Provider):
                raise ImproperlyConfigured(
                    f"signon provider {name} requested,"
                    f" but its entry in SIGNON_PROVIDERS setting is not a"
                    f" Provider"
                )
            return p

    raise ImproperlyConfigured(
        f"signon provider {name} requested,"
        " but not found in SIGNON_PROVIDERS setting"
    )


class GroupSyncMode(StrEnum):
    """When group membership is synchronized with provider roles."""

    #: Synchronize on every login
    ALWAYS = "always"
    #: Synchronize when the account is created, and on explicit request
    MANUAL = "manual"
    #: Never synchronize automatically
    DISABLED = "disabled"

    @classmethod
    def from_setting(cls, value: str | None) -> "GroupSyncMode":
        """Parse a configuration value, defaulting to ``MANUAL``."""
        try:
            return cls(value)
        except ValueError:
            return cls.MANUAL


class BoundProvider:
    """
    Request-aware proxy for Provider.

    This class provides provider-specific functionality based on the current
    Django request object.
    """

    def __init__(
        self, provider: "Provider", request: "django.http.HttpRequest"
    ) -> None:
        """
        Construct a BoundProvider from a Provider and a HttpRequest.

        :param provider: provider to bind to a request
        :param request: current Django request
        """
        self.provider = provider
        self.request = request

    def __getattr__(self, name: str) -> Any:
        """Proxy attribute access to the provider definition."""
        return getattr(self.provider, name)

    @property
    def state_session_key(self) -> str:
        """Session key storing the OAuth state of a login in progress."""
        return f"signon_state_{self.provider.name}"

    @property
    def pending_session_key(self) -> str:
        """Session key storing an identity waiting for an account name."""
        return f"signon_pending_{self.provider.name}"

    def logout(self) -> None:
        """Drop any signon data for this provider from the session."""
        self.request.session.pop(self.state_session_key, None)
        self.request.session.pop(self.pending_session_key, None)


class Provider:
    """Information about a signon identity provider."""

    #: Identifier to reference the provider in code and configuration
    name: str
    #: User-visible description
    label: str
    #: Optional user-visible icon, resolved via ``{% static %}`` in templates
    icon: str | None
    #: Freeform options used to configure behaviour for Signon subclasses
    options: dict[str, Any]
    #: Class used to create a request-bound version
    bound_class: type["BoundProvider"] = BoundProvider

    def __init__(
        self,
        name: str,
        label: str,
        *,
        icon: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> None:
        """
        Define an external authentication provider.

        Provider implementation subclasses can definer further keyword
        arguments.
        """
        self.name = name
        self.label = label
        self.icon = icon
        self.options: dict[str, Any] = options or {}

    def __str__(self) -> str:
        """Return the provider name."""
        return self.name

    def bind(self, request: "django.http.HttpRequest") -> "BoundProvider":
        """Create a BoundProvider for this session."""
        return self.bound_class(self, request)


class BoundDiscordProvider(BoundProvider):
    """Bound version of the Discord provider."""

    provider: "DiscordProvider"

    @property
    def redirect_uri(self) -> str:
        """Return the callback URL for this provider."""
        from django.urls import reverse

        # Needs guildgate.server.signon.urls included with namespace "signon"
        path = reverse("signon:callback", args=(self.provider.name,))
        if self.provider.redirect_base:
            return self.provider.redirect_base.rstrip("/") + path
        return self.request.build_absolute_uri(path)

    def client(self, token: dict[str, Any] | None = None) -> "DiscordClient":
        """Create a client acting on behalf of the user logging in."""
        from guildgate.server.signon.discord import DiscordClient

        return DiscordClient(self.provider, self.redirect_uri, token=token)


class DiscordProvider(Provider):
    """Discord OAuth2 identity provider, gated by guild membership."""

    bound_class = BoundDiscordProvider

    def __init__(
        self,
        *args: Any,
        client_id: str,
        client_secret: str,
        guild_id: str,
        redirect_base: str | None = None,
        allowed_roles: Collection[str | int] = (),
        auto_create: bool = True,
        group_sync: str | None = GroupSyncMode.MANUAL,
        role_to_group: Any = None,
        bot_token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        url: str = "https://discord.com",
        url_api: str = DISCORD_API_URL,
        scope: str | Collection[str] = ("identify", "guilds.members.read"),
        **kwargs: Any,
    ) -> None:
        """
        Define a Discord provider.

        :param client_id: OAuth2 client id of the Discord application
        :param client_secret: OAuth2 client secret of the Discord application
        :param guild_id: id of the guild whose membership grants access
        :param redirect_base: base URL used to build the callback URL; if
            missing, it is taken from the incoming request
        :param allowed_roles: if not empty, members need at least one of these
            roles to log in
        :param auto_create: create local accounts for new users
        :param group_sync: group synchronization mode
        :param role_to_group: mapping of role ids to local group names
        :param bot_token: bot token used for administrative membership checks
        :param timeout: timeout in seconds for each request to Discord
        :param url: root URL of the Discord web site
        :param url_api: root URL of the Discord API
        :raises MappingConfigInvalid: if role_to_group or allowed_roles are
            malformed
        """
        from guildgate.server.signon.exceptions import MappingConfigInvalid

        super().__init__(*args, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.guild_id = str(guild_id)
        self.redirect_base = redirect_base
        self.auto_create = auto_create
        self.group_sync = GroupSyncMode.from_setting(group_sync)
        self.role_to_group = RoleGroupMapping.parse(role_to_group)
        self.bot_token = bot_token
        self.timeout = timeout
        self.url_authorize = f"{url}/oauth2/authorize"
        self.url_token = f"{url_api}/oauth2/token"
        self.url_api = url_api
        self.scope: list[str]
        if isinstance(scope, str):
            self.scope = scope.split()
        else:
            self.scope = list(scope)

        roles: set[str] = set()
        for role in allowed_roles:
            if isinstance(role, bool) or not isinstance(role, (str, int)):
                raise MappingConfigInvalid(
                    f"{self.name}: allowed role {role!r} must be a string"
                    " or an integer"
                )
            roles.add(str(role))
        self.allowed_roles: frozenset[str] = frozenset(roles)

    @property
    def issuer(self) -> str:
        """Issuer name used for Identity records."""
        return self.name

    def is_allowed(self, roles: Collection[str]) -> bool:
        """Check if a member with the given roles is allowed to log in."""
        if not self.allowed_roles:
            return True
        return not self.allowed_roles.isdisjoint(roles)

    def bot_client(self) -> "DiscordBotClient":
        """
        Create a client using the bot credentials.

        :raises ValueError: if no bot token is configured
        """
        from guildgate.server.signon.discord import DiscordBotClient

        return DiscordBotClient(self)
