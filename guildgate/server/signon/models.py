# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""
Data exchanged with the identity provider.

The pydantic models describe the wire format of each endpoint, and are used
to decode responses so that schema mismatches fail instead of producing empty
values. The dataclasses are what the rest of the signon code works with.
"""

from dataclasses import dataclass
from typing import Any

try:
    import pydantic.v1 as pydantic
except ImportError:
    import pydantic as pydantic  # type: ignore


class StrictBaseModel(pydantic.BaseModel):
    """Stricter pydantic configuration."""

    class Config:
        """Set up stricter pydantic Config."""

        allow_mutation = False


class SnowflakeModel(StrictBaseModel):
    """Base for objects identified by a numeric string id."""

    id: pydantic.StrictStr

    @pydantic.validator("id")
    @classmethod
    def id_is_snowflake(cls, value: str) -> str:
        """Ids are non-empty decimal strings."""
        if not value.isdecimal():
            raise ValueError(f"{value!r} is not a valid id")
        return value


class TokenResponse(StrictBaseModel):
    """Response of the token endpoint."""

    access_token: pydantic.StrictStr
    token_type: str = "Bearer"
    scope: str | None = None

    @pydantic.validator("access_token")
    @classmethod
    def access_token_not_empty(cls, value: str) -> str:
        """Reject empty access tokens."""
        if not value:
            raise ValueError("access token is empty")
        return value


class UserResponse(SnowflakeModel):
    """Response of ``GET /users/@me``."""

    username: pydantic.StrictStr
    global_name: str | None = None
    email: str | None = None


class MemberResponse(StrictBaseModel):
    """Guild member, as returned by the member endpoints."""

    roles: list[pydantic.StrictStr]
    nick: str | None = None


class RoleResponse(SnowflakeModel):
    """Entry in the response of ``GET /guilds/{id}/roles``."""

    name: str


class RoleListResponse(StrictBaseModel):
    """Response of ``GET /guilds/{id}/roles``."""

    __root__: list[RoleResponse]


@dataclass(frozen=True)
class ExternalIdentity:
    """Identity of a user in the remote identity provider."""

    #: Stable identifier of the remote user
    id: str
    #: Remote account name
    username: str
    #: Optional name chosen by the user for display
    display_name: str | None = None
    #: Email, if the provider shared one
    email: str | None = None

    @classmethod
    def from_response(cls, response: UserResponse) -> "ExternalIdentity":
        """Build an ExternalIdentity from a decoded provider response."""
        return cls(
            id=response.id,
            username=response.username,
            display_name=response.global_name or None,
            email=response.email or None,
        )

    def as_claims(self) -> dict[str, Any]:
        """Return a JSON-serializable snapshot, used for Identity.claims."""
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "email": self.email,
        }

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "ExternalIdentity":
        """Rebuild an ExternalIdentity from :py:meth:`as_claims` output."""
        return cls(
            id=claims["id"],
            username=claims["username"],
            display_name=claims.get("display_name"),
            email=claims.get("email"),
        )


@dataclass(frozen=True)
class MembershipRecord:
    """Roles held by a user in a guild."""

    roles: frozenset[str]

    @classmethod
    def from_response(cls, response: MemberResponse) -> "MembershipRecord":
        """Build a MembershipRecord from a decoded provider response."""
        return cls(roles=frozenset(response.roles))
