# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""
HTTP clients for the Discord API.

:py:class:`DiscordClient` acts on behalf of the user logging in, using the
OAuth2 authorization code flow. :py:class:`DiscordBotClient` uses the bot
credentials configured in the provider, and is used for administrative
membership checks.

Every method performs a single HTTP request with the provider timeout and no
retries. Transport errors and unexpected responses are converted into
:py:class:`guildgate.server.signon.exceptions.SignonError` subclasses here, so
that callers never see ``requests`` or ``oauthlib`` exceptions.
"""

import logging
from typing import Any, TYPE_CHECKING

import requests
from oauthlib.oauth2 import OAuth2Error
from requests_oauthlib import OAuth2Session
from rest_framework import status

try:
    import pydantic.v1 as pydantic
except ImportError:
    import pydantic as pydantic  # type: ignore

from guildgate.server.signon.exceptions import (
    NotMember,
    TokenExchangeFailed,
    UpstreamUnavailable,
    UserInfoFailed,
)
from guildgate.server.signon.models import (
    ExternalIdentity,
    MemberResponse,
    MembershipRecord,
    RoleListResponse,
    TokenResponse,
    UserResponse,
)

if TYPE_CHECKING:
    from guildgate.server.signon.providers import DiscordProvider

log = logging.getLogger("guildgate.server.signon")


def _decode_member(
    response: requests.Response, description: str
) -> MembershipRecord:
    """
    Decode a guild member response.

    :param description: description of the member being looked up, for
                        logging
    :raises NotMember: if the response does not describe a guild member
    """
    match response.status_code:
        case status.HTTP_200_OK:
            try:
                member = MemberResponse.parse_obj(response.json())
            except (ValueError, pydantic.ValidationError) as e:
                log.warning(
                    "%s: cannot decode membership information: %s",
                    description,
                    e,
                )
                raise NotMember(
                    f"{description}: invalid membership response",
                    lookup_failed=True,
                )
            log.debug("%s: member with roles %s", description, member.roles)
            return MembershipRecord.from_response(member)
        case status.HTTP_404_NOT_FOUND:
            log.info("%s: not a guild member", description)
            raise NotMember(f"{description}: not a guild member")
        case _:
            log.warning(
                "%s: cannot fetch membership information: %d (%s)",
                description,
                response.status_code,
                response.reason,
            )
            raise NotMember(
                f"{description}: membership lookup failed"
                f" with status {response.status_code}",
                lookup_failed=True,
            )


class DiscordClient:
    """Talk to Discord on behalf of the user logging in."""

    def __init__(
        self,
        provider: "DiscordProvider",
        redirect_uri: str,
        token: dict[str, Any] | None = None,
    ) -> None:
        """
        Create a client for one login attempt.

        :param provider: provider configuration
        :param redirect_uri: callback URL registered with the provider
        :param token: previously obtained token, if any
        """
        self.provider = provider
        self.oauth = OAuth2Session(
            provider.client_id,
            scope=provider.scope,
            redirect_uri=redirect_uri,
            token=token,
        )

    def build_authorize_url(self, state: str) -> str:
        """Return the URL where to send the user to authorize the login."""
        url, _ = self.oauth.authorization_url(
            self.provider.url_authorize, state=state
        )
        assert isinstance(url, str)
        return url

    def exchange_code(self, code: str) -> TokenResponse:
        """
        Exchange an authorization code for an access token.

        The token is also stored in the session used for subsequent calls.

        :raises UpstreamUnavailable: the provider could not be reached
        :raises TokenExchangeFailed: the provider refused to issue a token
        """
        try:
            token = self.oauth.fetch_token(
                self.provider.url_token,
                code=code,
                client_secret=self.provider.client_secret,
                include_client_id=True,
                timeout=self.provider.timeout,
            )
        except requests.RequestException as e:
            log.warning("%s: token endpoint unreachable: %s", self.provider, e)
            raise UpstreamUnavailable(f"token request failed: {e}")
        except (OAuth2Error, ValueError, Warning) as e:
            log.warning("%s: token exchange failed: %s", self.provider, e)
            raise TokenExchangeFailed(f"token exchange failed: {e}")

        try:
            return TokenResponse.parse_obj(dict(token))
        except pydantic.ValidationError as e:
            log.warning("%s: invalid token response: %s", self.provider, e)
            raise TokenExchangeFailed(f"invalid token response: {e}")

    def _get(self, path: str) -> requests.Response:
        """
        Perform an authenticated GET request.

        :raises UpstreamUnavailable: the provider could not be reached
        """
        try:
            return self.oauth.get(
                f"{self.provider.url_api}{path}", timeout=self.provider.timeout
            )
        except requests.RequestException as e:
            log.warning("%s: GET %s failed: %s", self.provider, path, e)
            raise UpstreamUnavailable(f"GET {path} failed: {e}")

    def fetch_identity(self) -> ExternalIdentity:
        """
        Fetch the identity of the user logging in.

        :raises UpstreamUnavailable: the provider could not be reached
        :raises UserInfoFailed: the response is an error or cannot be decoded
        """
        response = self._get("/users/@me")
        if response.status_code != status.HTTP_200_OK:
            log.warning(
                "%s: cannot fetch user information: %d (%s)",
                self.provider,
                response.status_code,
                response.reason,
            )
            raise UserInfoFailed(
                f"user information request failed"
                f" with status {response.status_code}"
            )
        try:
            user = UserResponse.parse_obj(response.json())
        except (ValueError, pydantic.ValidationError) as e:
            log.warning("%s: invalid user information: %s", self.provider, e)
            raise UserInfoFailed(f"invalid user information: {e}")
        return ExternalIdentity.from_response(user)

    def fetch_membership(self, guild_id: str) -> MembershipRecord:
        """
        Fetch the guild membership of the user logging in.

        :raises NotMember: the user is not a member, or membership could not
                           be verified
        """
        description = f"{self.provider}: guild {guild_id}"
        try:
            response = self._get(f"/users/@me/guilds/{guild_id}/member")
        except UpstreamUnavailable as e:
            raise NotMember(f"{description}: {e}", lookup_failed=True)
        return _decode_member(response, description)


class DiscordBotClient:
    """Talk to Discord using the bot credentials of a provider."""

    def __init__(self, provider: "DiscordProvider") -> None:
        """Create a bot client for the provider."""
        if not provider.bot_token:
            raise ValueError(f"{provider}: no bot token configured")
        self.provider = provider
        self.session = requests.Session()
        self.session.headers["Authorization"] = f"Bot {provider.bot_token}"

    def _get(self, path: str) -> requests.Response:
        return self.session.get(
            f"{self.provider.url_api}{path}", timeout=self.provider.timeout
        )

    def fetch_membership_as_admin(
        self, guild_id: str, external_id: str
    ) -> MembershipRecord:
        """
        Fetch the guild membership of any user.

        :raises NotMember: the user is not a member, or membership could not
                           be verified
        """
        description = f"{self.provider}: guild {guild_id} user {external_id}"
        try:
            response = self._get(f"/guilds/{guild_id}/members/{external_id}")
        except requests.RequestException as e:
            log.warning("%s: membership lookup failed: %s", description, e)
            raise NotMember(
                f"{description}: membership lookup failed: {e}",
                lookup_failed=True,
            )
        return _decode_member(response, description)

    def fetch_group_roles(self, guild_id: str) -> dict[str, str]:
        """
        Fetch the roles defined in a guild.

        :return: a dict mapping role ids to role names
        :raises UpstreamUnavailable: the role list could not be fetched
        """
        try:
            response = self._get(f"/guilds/{guild_id}/roles")
            response.raise_for_status()
            roles = RoleListResponse.parse_obj(response.json())
        except (
            requests.RequestException,
            ValueError,
            pydantic.ValidationError,
        ) as e:
            log.warning(
                "%s: cannot fetch roles of guild %s: %s",
                self.provider,
                guild_id,
                e,
            )
            raise UpstreamUnavailable(f"cannot fetch guild roles: {e}")
        return {role.id: role.name for role in roles.__root__}
