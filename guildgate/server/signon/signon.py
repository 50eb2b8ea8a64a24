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
Logic to authenticate a request using signon Providers.

A login goes through these steps:

1. :py:meth:`Signon.start` stores a random state in the session and returns
   the provider URL where the user is sent to authorize the login
2. :py:meth:`Signon.handle_callback` checks the state, fetches the remote
   identity and guild membership, and applies the access policy. If the
   identity is already linked to a local account, the login succeeds.
   Otherwise, the identity is stashed in the session and a name for the new
   account is suggested
3. :py:meth:`Signon.submit_username` creates the account with the name chosen
   by the user, and links it to the remote identity

Each step returns a :py:class:`Pass`, :py:class:`Fail` or
:py:class:`PendingNameChoice` result. Logging in the user with the resulting
identity is left to the caller.
"""

import logging
import secrets
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import django.http
from django.conf import settings
from django.contrib.auth.hashers import make_password
from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, transaction
from django.utils.crypto import constant_time_compare

from guildgate.db.models import Identity, User
from guildgate.db.models.auth import account_name_errors
from guildgate.server.signon import providers
from guildgate.server.signon.exceptions import FailureReason, SignonError
from guildgate.server.signon.group_sync import GroupDiff, GroupReconciler
from guildgate.server.signon.models import ExternalIdentity
from guildgate.server.signon.providers import GroupSyncMode
from guildgate.server.signon.signon_utils import (
    canonicalize,
    canonicalize_submitted_name,
    split_full_name,
)

log = logging.getLogger("guildgate.server.signon")


@dataclass(frozen=True)
class Pass:
    """The user can be logged in."""

    #: Local account
    user: User
    #: Link between the local account and the remote identity
    identity: Identity
    #: Local groups of the user once the login is complete
    groups: frozenset[str]
    #: Group changes applied, or None if groups were not synchronized
    diff: GroupDiff | None = None


@dataclass(frozen=True)
class Fail:
    """The login was refused."""

    reason: FailureReason
    detail: str = ""

    @property
    def message(self) -> str:
        """Return a user-visible description of the failure."""
        return self.reason.message


@dataclass(frozen=True)
class PendingNameChoice:
    """The user needs to choose a name for a new local account."""

    #: Suggested account name
    candidate: str
    #: Token to present with the chosen name
    stash_token: str


SignonResult = Pass | Fail | PendingNameChoice


class Signon:
    """
    Backend used to interact with external authentication providers.

    This is setup by SignonMiddleware as request.signon.

    The constructor needs to be as lightweight as possible, as it is called on
    every request. Everything else is loaded only when needed.
    """

    def __init__(self, request: django.http.HttpRequest) -> None:
        """Create a Signon object for a request."""
        self.request = request
        self.providers: Sequence[providers.Provider] = getattr(
            settings, "SIGNON_PROVIDERS", ()
        )
        self.reconciler = GroupReconciler()

    def get_provider(self, name: str) -> providers.DiscordProvider:
        """
        Look up a Discord provider by name.

        :raises ImproperlyConfigured: if the provider is missing or has the
                                      wrong type
        """
        provider = providers.get(name)
        if not isinstance(provider, providers.DiscordProvider):
            raise ImproperlyConfigured(
                f"signon provider {name} is not a DiscordProvider"
            )
        return provider

    def logout_identities(self) -> None:
        """Drop any signon data in progress from the session."""
        for provider in self.providers:
            provider.bind(self.request).logout()

    def start(self, name: str) -> str:
        """
        Start a login with the named provider.

        :return: the URL where to redirect the user
        """
        provider = self.get_provider(name)
        bound = provider.bind(self.request)
        assert isinstance(bound, providers.BoundDiscordProvider)
        state = secrets.token_urlsafe(32)
        self.request.session[bound.state_session_key] = state
        # A new login invalidates any account creation left in progress
        self.request.session.pop(bound.pending_session_key, None)
        return bound.client().build_authorize_url(state)

    def check_access(
        self,
        provider: providers.DiscordProvider,
        external: ExternalIdentity,
        roles: Collection[str],
    ) -> Fail | None:
        """
        Apply the access policy to a guild member.

        This can be overridden by the class set in ``SIGNON_CLASS`` to
        implement more complex checks.

        :return: a Fail result, or None if access is granted
        """
        if provider.is_allowed(roles):
            return None
        log.warning(
            "%s: user %s (%s) has none of the allowed roles: has %s",
            provider,
            external.id,
            external.username,
            sorted(roles),
        )
        return Fail(
            FailureReason.ROLE_NOT_ALLOWED,
            f"user {external.id} has none of the allowed roles",
        )

    def sync_groups(
        self,
        provider: providers.DiscordProvider,
        user: User,
        roles: Collection[str],
    ) -> GroupDiff | None:
        """
        Synchronize the groups of user with their roles.

        :return: the changes applied, or None if the provider has no role
                 mapping
        """
        if not provider.role_to_group:
            return None
        return self.reconciler.sync(user, roles, provider.role_to_group)

    def handle_callback(
        self, name: str, params: Mapping[str, str]
    ) -> SignonResult:
        """
        Handle the redirect back from the provider.

        :param name: provider name
        :param params: query string parameters of the callback
        """
        provider = self.get_provider(name)
        bound = provider.bind(self.request)
        assert isinstance(bound, providers.BoundDiscordProvider)

        # The state is single use, whatever the outcome
        expected_state = self.request.session.pop(bound.state_session_key, None)

        if error := params.get("error"):
            description = params.get("error_description", "")
            log.warning(
                "%s: authorization denied: %s %s", provider, error, description
            )
            return Fail(
                FailureReason.AUTHORIZATION_DENIED,
                f"{error}: {description}" if description else error,
            )

        remote_state = params.get("state")
        if expected_state is None:
            log.warning("%s: expected state not found in session", provider)
            return Fail(FailureReason.INVALID_STATE, "no login in progress")
        if remote_state is None or not constant_time_compare(
            remote_state, expected_state
        ):
            log.warning(
                "%s: request state mismatch: remote: %r", provider, remote_state
            )
            return Fail(FailureReason.INVALID_STATE, "request state mismatch")
        if not (code := params.get("code")):
            log.warning("%s: authorization code missing", provider)
            return Fail(FailureReason.INVALID_STATE, "missing code")

        client = bound.client()
        try:
            client.exchange_code(code)
            external = client.fetch_identity()
            membership = client.fetch_membership(provider.guild_id)
        except SignonError as e:
            return Fail(e.reason, str(e))

        if fail := self.check_access(provider, external, membership.roles):
            return fail

        try:
            identity = Identity.objects.select_related("user").get(
                issuer=provider.issuer, subject=external.id
            )
        except Identity.DoesNotExist:
            pass
        else:
            user = identity.user
            if not user.is_active:
                log.warning("%s: user is not active", user)
                return Fail(
                    FailureReason.ACCOUNT_DISABLED, f"{user} is not active"
                )
            diff: GroupDiff | None = None
            if provider.group_sync == GroupSyncMode.ALWAYS:
                with transaction.atomic():
                    diff = self.sync_groups(provider, user, membership.roles)
            log.debug("%s: authenticated via %s", user, identity)
            return Pass(
                user=user,
                identity=identity,
                groups=frozenset(user.group_names()),
                diff=diff,
            )

        if not provider.auto_create:
            log.warning(
                "%s: no local account for %s and auto_create is disabled",
                provider,
                external.id,
            )
            return Fail(
                FailureReason.ACCOUNT_CREATION_DISABLED,
                f"no local account for {external.id}",
            )

        candidate = canonicalize(external)
        stash_token = secrets.token_urlsafe(32)
        self.request.session[bound.pending_session_key] = {
            "token": stash_token,
            "identity": external.as_claims(),
            "roles": sorted(membership.roles),
            "candidate": candidate,
        }
        return PendingNameChoice(candidate=candidate, stash_token=stash_token)

    def pending(self, name: str) -> PendingNameChoice | None:
        """Return the account creation in progress, if any."""
        bound = self.get_provider(name).bind(self.request)
        if not (stash := self.request.session.get(bound.pending_session_key)):
            return None
        return PendingNameChoice(
            candidate=stash["candidate"], stash_token=stash["token"]
        )

    def _load_stash(
        self, bound: providers.BoundProvider, stash_token: str
    ) -> dict[str, Any] | None:
        stash = self.request.session.get(bound.pending_session_key)
        if not stash or not stash_token:
            return None
        if not constant_time_compare(stash_token, stash["token"]):
            return None
        assert isinstance(stash, dict)
        return stash

    def submit_username(
        self, name: str, stash_token: str, username: str
    ) -> SignonResult:
        """
        Create the local account for a stashed identity.

        On an invalid or taken username, the stash is kept so that the user
        can try again.

        :param name: provider name
        :param stash_token: token from the PendingNameChoice result
        :param username: account name chosen by the user
        """
        provider = self.get_provider(name)
        bound = provider.bind(self.request)

        if (stash := self._load_stash(bound, stash_token)) is None:
            log.warning(
                "%s: no matching account creation in progress", provider
            )
            return Fail(
                FailureReason.INVALID_STATE, "no account creation in progress"
            )

        if errors := account_name_errors(username):
            return Fail(FailureReason.INVALID_USERNAME, "; ".join(errors))
        canonical = canonicalize_submitted_name(username)
        if errors := account_name_errors(canonical):
            return Fail(FailureReason.INVALID_USERNAME, "; ".join(errors))

        if User.objects.filter(username=canonical).exists():
            return Fail(
                FailureReason.USERNAME_EXISTS, f"{canonical!r} already exists"
            )

        external = ExternalIdentity.from_claims(stash["identity"])
        roles = frozenset(stash["roles"])

        if Identity.objects.filter(
            issuer=provider.issuer, subject=external.id
        ).exists():
            # Another login created the account in the meantime
            del self.request.session[bound.pending_session_key]
            log.warning("%s: identity %s already linked", provider, external.id)
            return Fail(
                FailureReason.INVALID_STATE,
                f"identity {external.id} is already linked",
            )

        try:
            with transaction.atomic():
                user = self.create_user(canonical, external)
                if user is None:
                    return Fail(
                        FailureReason.INVALID_USERNAME,
                        f"cannot create an account named {canonical!r}",
                    )
                identity = Identity.objects.create(
                    user=user,
                    issuer=provider.issuer,
                    subject=external.id,
                    claims=external.as_claims(),
                )
                diff: GroupDiff | None = None
                if provider.group_sync != GroupSyncMode.DISABLED:
                    diff = self.sync_groups(provider, user, roles)
        except IntegrityError as e:
            log.warning(
                "%s: cannot create account %r: %s", provider, canonical, e
            )
            if Identity.objects.filter(
                issuer=provider.issuer, subject=external.id
            ).exists():
                # Another login linked the identity in the meantime
                del self.request.session[bound.pending_session_key]
                return Fail(
                    FailureReason.INVALID_STATE,
                    f"identity {external.id} is already linked",
                )
            return Fail(
                FailureReason.USERNAME_EXISTS, f"{canonical!r} already exists"
            )

        del self.request.session[bound.pending_session_key]
        log.info("%s: auto created from identity %s", user, identity)
        return Pass(
            user=user,
            identity=identity,
            groups=frozenset(user.group_names()),
            diff=diff,
        )

    def create_user(
        self, username: str, external: ExternalIdentity
    ) -> User | None:
        """
        Create a local user for an external identity.

        This can be overridden by the class set in ``SIGNON_CLASS`` to fill
        in more user information.

        :return: the new user, or None if the user data did not validate
        """
        first_name, last_name = split_full_name(external.display_name or "")

        email = ""
        if external.email:
            try:
                validate_email(external.email)
            except ValidationError:
                log.info(
                    "%s: ignoring invalid email %r", external.id, external.email
                )
            else:
                email = User.objects.normalize_email(external.email)

        # Django does not run validators on create_user, so call validation
        # explicitly before save
        user = User(
            username=username,
            email=email,
            first_name=first_name[:150],
            last_name=last_name[:150],
        )
        user.password = make_password(None)

        try:
            user.clean_fields()
        except ValidationError as e:
            log.warning(
                "%s: cannot create a local user", external.id, exc_info=e
            )
            return None

        user.save()
        return user
