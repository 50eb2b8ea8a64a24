# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Exceptions and failure reasons for signon."""

from enum import StrEnum

from django.core.exceptions import ImproperlyConfigured


class FailureReason(StrEnum):
    """Reason codes for a failed signon attempt."""

    INVALID_STATE = "invalid-state"
    AUTHORIZATION_DENIED = "authorization-denied"
    UPSTREAM_UNAVAILABLE = "upstream-unavailable"
    TOKEN_EXCHANGE_FAILED = "token-exchange-failed"
    USERINFO_FAILED = "userinfo-failed"
    NOT_MEMBER = "not-member"
    ROLE_NOT_ALLOWED = "role-not-allowed"
    ACCOUNT_CREATION_DISABLED = "account-creation-disabled"
    ACCOUNT_DISABLED = "account-disabled"
    INVALID_USERNAME = "invalid-username"
    USERNAME_EXISTS = "username-exists"
    MAPPING_CONFIG_INVALID = "mapping-config-invalid"

    @property
    def message(self) -> str:
        """Return a user-visible description of the failure."""
        return FAILURE_MESSAGES[self]


FAILURE_MESSAGES: dict[FailureReason, str] = {
    FailureReason.INVALID_STATE: (
        "The login request has expired or was already used."
        " Please start again."
    ),
    FailureReason.AUTHORIZATION_DENIED: (
        "The identity provider did not authorize the login."
    ),
    FailureReason.UPSTREAM_UNAVAILABLE: (
        "The identity provider cannot be reached. Please try again later."
    ),
    FailureReason.TOKEN_EXCHANGE_FAILED: (
        "The identity provider did not issue an access token."
    ),
    FailureReason.USERINFO_FAILED: (
        "Cannot fetch user information from the identity provider."
    ),
    FailureReason.NOT_MEMBER: (
        "Access cannot be verified: you need to be a member of the server."
    ),
    FailureReason.ROLE_NOT_ALLOWED: (
        "You do not have a server role that grants access."
    ),
    FailureReason.ACCOUNT_CREATION_DISABLED: (
        "There is no local account for you, and accounts are not created"
        " automatically."
    ),
    FailureReason.ACCOUNT_DISABLED: "Your local account has been disabled.",
    FailureReason.INVALID_USERNAME: "The chosen username is not valid.",
    FailureReason.USERNAME_EXISTS: "The chosen username is already taken.",
    FailureReason.MAPPING_CONFIG_INVALID: (
        "Role to group mapping is misconfigured."
    ),
}


class SignonError(Exception):
    """Base class for typed signon failures."""

    reason: FailureReason

    def __init__(self, message: str, *, reason: FailureReason | None = None):
        """Store the failure reason alongside the message."""
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class UpstreamError(SignonError):
    """Failure talking to the identity provider."""


class UpstreamUnavailable(UpstreamError):
    """The identity provider could not be reached or timed out."""

    reason = FailureReason.UPSTREAM_UNAVAILABLE


class TokenExchangeFailed(UpstreamError):
    """The authorization code could not be exchanged for a token."""

    reason = FailureReason.TOKEN_EXCHANGE_FAILED


class UserInfoFailed(UpstreamError):
    """The remote user information could not be fetched or decoded."""

    reason = FailureReason.USERINFO_FAILED


class NotMember(UpstreamError):
    """
    Group membership could not be verified.

    This covers both the case where the user is not a member and the case
    where the provider could not be queried. Login only sees the reason code;
    callers acting in bulk can tell the cases apart with ``lookup_failed``.
    """

    reason = FailureReason.NOT_MEMBER

    def __init__(self, message: str, *, lookup_failed: bool = False):
        """Record whether the provider failed to answer the lookup."""
        super().__init__(message)
        #: True if the provider did not say whether the user is a member
        self.lookup_failed = lookup_failed


class MappingConfigInvalid(ImproperlyConfigured):
    """The role to group mapping configuration is malformed."""

    reason = FailureReason.MAPPING_CONFIG_INVALID
