# Copyright 2020-2023 Enrico Zini <enrico@debian.org>
# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Test of the backend for signon authentication using external providers."""

from typing import Any
from unittest import mock
from urllib.parse import parse_qs, urlparse

import django.contrib.sessions.backends.base
import requests
import responses
from django.contrib.auth.models import AnonymousUser
from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.db import IntegrityError
from django.test import RequestFactory, override_settings

from guildgate.db.models import Identity, User
from guildgate.server.signon import providers
from guildgate.server.signon.exceptions import FailureReason
from guildgate.server.signon.group_sync import GroupDiff
from guildgate.server.signon.signon import (
    Fail,
    Pass,
    PendingNameChoice,
    Signon,
    SignonResult,
)
from guildgate.test.discord import DiscordAPIMock
from guildgate.test.django import TestCase


class MockSession(django.contrib.sessions.backends.base.SessionBase):
    """In-memory session with no persistence, used for tests."""

    def create(self) -> None:
        """Mock SessionBase API endpoint."""

    def delete(self, *args: Any) -> None:
        """Mock SessionBase API endpoint."""


class SignonTestCase(TestCase):
    """Base class for testing Signon and its subclasses."""

    signon_class: type[Signon] = Signon

    def setUp(self) -> None:
        """Provide a mock unauthenticated request and Discord API."""
        super().setUp()
        self.factory = RequestFactory()
        self.request = self.factory.get("/")
        self.request.session = MockSession()
        self.request.user = AnonymousUser()
        self.providers: list[providers.Provider] = []
        self.enterContext(override_settings(SIGNON_PROVIDERS=self.providers))
        self.signon = self.signon_class(self.request)
        self.rsps = self.enterContext(
            responses.RequestsMock(assert_all_requests_are_fired=False)
        )
        self.api = DiscordAPIMock(self.rsps)

    def add_provider(self, **kwargs: Any) -> providers.DiscordProvider:
        """Add a Discord provider to the provider configuration."""
        provider = self.make_discord_provider(**kwargs)
        self.providers.append(provider)
        return provider

    def start_login(self, name: str = "discord") -> str:
        """Start a login and return the state sent to the provider."""
        url = self.signon.start(name)
        state = parse_qs(urlparse(url).query)["state"]
        self.assertEqual(len(state), 1)
        return state[0]

    def login(
        self,
        roles: tuple[str, ...] = (),
        *,
        user_id: str = "42",
        username: str = "bob",
        name: str = "discord",
        **kwargs: Any,
    ) -> SignonResult:
        """Run a login up to the end of the callback."""
        state = self.start_login(name)
        self.api.token()
        self.api.user(user_id, username, **kwargs)
        self.api.member(roles=roles)
        return self.signon.handle_callback(
            name, {"state": state, "code": "123code"}
        )

    def assertFails(
        self, result: SignonResult, reason: FailureReason
    ) -> Fail:
        """Ensure that result is a Fail with the given reason."""
        assert isinstance(result, Fail)
        self.assertEqual(result.reason, reason)
        return result

    def stash(self, name: str = "discord") -> dict[str, Any] | None:
        """Return the account creation data stashed in the session."""
        value = self.request.session.get(f"signon_pending_{name}")
        assert value is None or isinstance(value, dict)
        return value


class SignonTests(SignonTestCase):
    """Tests for the login flow."""

    def test_get_provider(self) -> None:
        provider = self.add_provider()
        self.assertIs(self.signon.get_provider("discord"), provider)

    def test_get_provider_unknown(self) -> None:
        with self.assertRaisesRegex(
            ImproperlyConfigured, "not found in SIGNON_PROVIDERS"
        ):
            self.signon.get_provider("missing")

    def test_get_provider_wrong_type(self) -> None:
        self.providers.append(providers.Provider("generic", "Generic"))
        with self.assertRaisesRegex(
            ImproperlyConfigured, "generic is not a DiscordProvider"
        ):
            self.signon.get_provider("generic")

    def test_start(self) -> None:
        """start stores a fresh state and drops pending account creations."""
        self.add_provider()
        self.request.session["signon_pending_discord"] = {"token": "x"}

        url = urlparse(self.signon.start("discord"))

        self.assertEqual(url.netloc, "discord.com")
        self.assertEqual(url.path, "/oauth2/authorize")
        query = parse_qs(url.query)
        self.assertEqual(query["client_id"], ["123client_id"])
        self.assertEqual(query["response_type"], ["code"])
        self.assertEqual(query["scope"], ["identify guilds.members.read"])
        self.assertEqual(
            query["redirect_uri"],
            ["https://guildgate.example.org/signon/discord/callback/"],
        )
        self.assertEqual(
            query["state"], [self.request.session["signon_state_discord"]]
        )
        self.assertIsNone(self.stash())

    def test_start_new_state_each_time(self) -> None:
        self.add_provider()
        self.assertNotEqual(self.start_login(), self.start_login())

    def test_state_mismatch(self) -> None:
        """A mismatching state fails without contacting the provider."""
        self.add_provider()
        self.request.session["signon_state_discord"] = "abc"

        with self.assertLogsContains(
            "request state mismatch", logger="guildgate.server.signon"
        ):
            result = self.signon.handle_callback(
                "discord", {"state": "xyz", "code": "123code"}
            )

        self.assertFails(result, FailureReason.INVALID_STATE)
        self.assertNotIn("signon_state_discord", self.request.session)
        self.assertEqual(len(self.rsps.calls), 0)

    def test_state_missing_from_session(self) -> None:
        self.add_provider()
        result = self.signon.handle_callback(
            "discord", {"state": "abc", "code": "123code"}
        )
        self.assertFails(result, FailureReason.INVALID_STATE)

    def test_state_missing_from_callback(self) -> None:
        self.add_provider()
        self.start_login()
        result = self.signon.handle_callback("discord", {"code": "123code"})
        self.assertFails(result, FailureReason.INVALID_STATE)

    def test_state_reuse(self) -> None:
        """The state can only be used once."""
        self.add_provider()
        state = self.start_login()
        self.api.token()
        self.api.user()
        self.api.member()
        params = {"state": state, "code": "123code"}

        self.assertIsInstance(
            self.signon.handle_callback("discord", params), PendingNameChoice
        )
        self.assertFails(
            self.signon.handle_callback("discord", params),
            FailureReason.INVALID_STATE,
        )

    def test_missing_code(self) -> None:
        self.add_provider()
        state = self.start_login()
        result = self.signon.handle_callback("discord", {"state": state})
        self.assertFails(result, FailureReason.INVALID_STATE)
        self.assertNotIn("signon_state_discord", self.request.session)

    def test_authorization_denied(self) -> None:
        self.add_provider()
        state = self.start_login()
        result = self.signon.handle_callback(
            "discord",
            {
                "state": state,
                "error": "access_denied",
                "error_description": "The resource owner denied the request",
            },
        )
        fail = self.assertFails(result, FailureReason.AUTHORIZATION_DENIED)
        self.assertEqual(
            fail.detail, "access_denied: The resource owner denied the request"
        )
        self.assertNotIn("signon_state_discord", self.request.session)

    def test_token_exchange_failed(self) -> None:
        self.add_provider()
        state = self.start_login()
        self.api.token(status_code=400, body={"error": "invalid_grant"})
        result = self.signon.handle_callback(
            "discord", {"state": state, "code": "123code"}
        )
        self.assertFails(result, FailureReason.TOKEN_EXCHANGE_FAILED)

    def test_upstream_unavailable(self) -> None:
        provider = self.add_provider()
        state = self.start_login()
        self.rsps.add(
            responses.POST,
            provider.url_token,
            body=requests.ConnectionError("connection refused"),
        )
        result = self.signon.handle_callback(
            "discord", {"state": state, "code": "123code"}
        )
        self.assertFails(result, FailureReason.UPSTREAM_UNAVAILABLE)

    def test_userinfo_failed(self) -> None:
        self.add_provider()
        state = self.start_login()
        self.api.token()
        self.api.user(status_code=401, body={"message": "401: Unauthorized"})
        result = self.signon.handle_callback(
            "discord", {"state": state, "code": "123code"}
        )
        self.assertFails(result, FailureReason.USERINFO_FAILED)

    def test_not_member(self) -> None:
        self.add_provider()
        state = self.start_login()
        self.api.token()
        self.api.user()
        self.api.member(status_code=404)
        result = self.signon.handle_callback(
            "discord", {"state": state, "code": "123code"}
        )
        self.assertFails(result, FailureReason.NOT_MEMBER)
        self.assertIsNone(self.stash())

    def test_role_not_allowed(self) -> None:
        """Members without any of the allowed roles are refused."""
        self.add_provider(allowed_roles=["999"])
        with self.assertLogsContains(
            "has none of the allowed roles", logger="guildgate.server.signon"
        ):
            result = self.login(roles=("111",))
        self.assertFails(result, FailureReason.ROLE_NOT_ALLOWED)
        self.assertIsNone(self.stash())

    def test_role_allowed(self) -> None:
        self.add_provider(allowed_roles=[999, "111"])
        self.assertIsInstance(
            self.login(roles=("111", "222")), PendingNameChoice
        )

    def test_new_user_pending(self) -> None:
        """An unlinked identity is stashed waiting for an account name."""
        self.add_provider()
        result = self.login(
            roles=("111",), global_name="Bob Smith", email="bob@example.org"
        )

        assert isinstance(result, PendingNameChoice)
        self.assertEqual(result.candidate, "Bob")
        self.assertEqual(self.signon.pending("discord"), result)
        self.assertEqual(
            self.stash(),
            {
                "token": result.stash_token,
                "identity": {
                    "id": "42",
                    "username": "bob",
                    "display_name": "Bob Smith",
                    "email": "bob@example.org",
                },
                "roles": ["111"],
                "candidate": "Bob",
            },
        )
        self.assertFalse(User.objects.exists())
        self.assertFalse(Identity.objects.exists())

    def test_pending_none(self) -> None:
        self.add_provider()
        self.assertIsNone(self.signon.pending("discord"))

    def test_new_user_auto_create_disabled(self) -> None:
        self.add_provider(auto_create=False)
        self.assertFails(
            self.login(), FailureReason.ACCOUNT_CREATION_DISABLED
        )
        self.assertIsNone(self.stash())
        self.assertFalse(User.objects.exists())

    def test_linked_user(self) -> None:
        """A linked identity logs in, without group sync by default."""
        self.add_provider(role_to_group={"111": "editor"})
        user = self.create_user("Bob", groups=["reviewer"])
        identity = self.create_identity(user)

        result = self.login(roles=("111",))

        self.assertEqual(
            result,
            Pass(
                user=user,
                identity=identity,
                groups=frozenset(["reviewer"]),
                diff=None,
            ),
        )
        self.assertEqual(user.group_names(), {"reviewer"})
        self.assertIsNone(self.stash())

    def test_linked_user_group_sync_always(self) -> None:
        """Groups are synchronized on each login in "always" mode."""
        self.add_provider(
            group_sync="always",
            role_to_group={"111": "editor", "222": "reviewer"},
        )
        user = self.create_user("Bob", groups=["reviewer", "local"])
        self.create_identity(user)

        result = self.login(roles=("111",))

        assert isinstance(result, Pass)
        self.assertEqual(
            result.diff,
            GroupDiff(
                added=frozenset(["editor"]), removed=frozenset(["reviewer"])
            ),
        )
        self.assertEqual(result.groups, frozenset(["editor", "local"]))
        self.assertEqual(user.group_names(), {"editor", "local"})

    def test_linked_user_group_sync_disabled(self) -> None:
        self.add_provider(
            group_sync="disabled", role_to_group={"111": "editor"}
        )
        user = self.create_user("Bob")
        self.create_identity(user)

        result = self.login(roles=("111",))

        assert isinstance(result, Pass)
        self.assertEqual(result.groups, frozenset())
        self.assertIsNone(result.diff)
        self.assertEqual(user.group_names(), set())

    def test_linked_user_inactive(self) -> None:
        self.add_provider()
        user = self.create_user("Bob", is_active=False)
        self.create_identity(user)
        self.assertFails(self.login(), FailureReason.ACCOUNT_DISABLED)

    def test_logout_identities(self) -> None:
        self.add_provider()
        self.add_provider(name="other")
        self.request.session["signon_state_discord"] = "abc"
        self.request.session["signon_pending_other"] = {"token": "x"}
        self.request.session["unrelated"] = "value"

        self.signon.logout_identities()

        self.assertEqual(dict(self.request.session), {"unrelated": "value"})


class SubmitUsernameTests(SignonTestCase):
    """Tests for the creation of new accounts."""

    def pending(self, **kwargs: Any) -> PendingNameChoice:
        """Run a login that ends with an account name choice."""
        result = self.login(**kwargs)
        assert isinstance(result, PendingNameChoice)
        return result

    def test_create_account(self) -> None:
        """A new account gets the groups its roles map to."""
        self.add_provider(role_to_group={"111": "editor"})
        pending = self.pending(roles=("111",), username="bob#0")
        self.assertEqual(pending.candidate, "Bob0")

        result = self.signon.submit_username(
            "discord", pending.stash_token, pending.candidate
        )

        assert isinstance(result, Pass)
        self.assertEqual(result.user.username, "Bob0")
        self.assertEqual(result.groups, frozenset(["editor"]))
        assert result.diff is not None
        self.assertEqual(result.diff.added, frozenset(["editor"]))
        self.assertEqual(result.diff.removed, frozenset())
        self.assertEqual(result.user.group_names(), {"editor"})
        self.assertFalse(result.user.has_usable_password())
        self.assertEqual(result.identity.user, result.user)
        self.assertEqual(result.identity.issuer, "discord")
        self.assertEqual(result.identity.subject, "42")
        self.assertEqual(result.identity.claims["username"], "bob#0")
        self.assertIsNone(self.stash())

    def test_create_account_user_details(self) -> None:
        self.add_provider()
        pending = self.pending(
            global_name="Robert Smith", email="Bob@EXAMPLE.org"
        )

        result = self.signon.submit_username(
            "discord", pending.stash_token, "Bob"
        )

        assert isinstance(result, Pass)
        self.assertEqual(result.user.first_name, "Robert")
        self.assertEqual(result.user.last_name, "Smith")
        self.assertEqual(result.user.email, "Bob@example.org")

    def test_create_account_invalid_email(self) -> None:
        self.add_provider()
        pending = self.pending(email="not an email")

        with self.assertLogsContains(
            "ignoring invalid email", logger="guildgate.server.signon"
        ):
            result = self.signon.submit_username(
                "discord", pending.stash_token, "Bob"
            )

        assert isinstance(result, Pass)
        self.assertEqual(result.user.email, "")

    def test_create_account_canonicalizes_name(self) -> None:
        self.add_provider()
        pending = self.pending()

        result = self.signon.submit_username(
            "discord", pending.stash_token, "  robert   the__builder "
        )

        assert isinstance(result, Pass)
        self.assertEqual(result.user.username, "Robert_the_builder")

    def test_create_account_group_sync_disabled(self) -> None:
        self.add_provider(
            group_sync="disabled", role_to_group={"111": "editor"}
        )
        pending = self.pending(roles=("111",))

        result = self.signon.submit_username(
            "discord", pending.stash_token, "Bob"
        )

        assert isinstance(result, Pass)
        self.assertIsNone(result.diff)
        self.assertEqual(result.groups, frozenset())
        self.assertEqual(result.user.group_names(), set())

    def test_create_account_no_mapping(self) -> None:
        self.add_provider()
        pending = self.pending(roles=("111",))

        result = self.signon.submit_username(
            "discord", pending.stash_token, "Bob"
        )

        assert isinstance(result, Pass)
        self.assertEqual(result.groups, frozenset())
        self.assertIsNone(result.diff)

    def test_wrong_stash_token(self) -> None:
        """A wrong token fails, keeping the stash for the right one."""
        self.add_provider()
        pending = self.pending()

        self.assertFails(
            self.signon.submit_username("discord", "wrong", "Bob"),
            FailureReason.INVALID_STATE,
        )
        self.assertFails(
            self.signon.submit_username("discord", "", "Bob"),
            FailureReason.INVALID_STATE,
        )
        self.assertIsNotNone(self.stash())
        self.assertIsInstance(
            self.signon.submit_username("discord", pending.stash_token, "Bob"),
            Pass,
        )

    def test_no_stash(self) -> None:
        self.add_provider()
        self.assertFails(
            self.signon.submit_username("discord", "token", "Bob"),
            FailureReason.INVALID_STATE,
        )

    def test_invalid_username(self) -> None:
        """Invalid names fail and the user can try again."""
        self.add_provider()
        pending = self.pending()

        for username in ("", "   ", "Admin", "bob#1", "127.0.0.1", "_"):
            with self.subTest(username=username):
                self.assertFails(
                    self.signon.submit_username(
                        "discord", pending.stash_token, username
                    ),
                    FailureReason.INVALID_USERNAME,
                )
                self.assertIsNotNone(self.stash())

        self.assertFalse(User.objects.exists())

    def test_username_exists(self) -> None:
        """A taken name fails and the user can try again."""
        self.add_provider()
        self.create_user("Bob")
        pending = self.pending()

        fail = self.assertFails(
            self.signon.submit_username("discord", pending.stash_token, "bob"),
            FailureReason.USERNAME_EXISTS,
        )
        self.assertEqual(fail.detail, "'Bob' already exists")
        self.assertIsNotNone(self.stash())
        self.assertFalse(Identity.objects.exists())

    def test_username_exists_race(self) -> None:
        """A database uniqueness error is reported as a taken name."""
        self.add_provider()
        pending = self.pending()

        with mock.patch.object(
            self.signon, "create_user", side_effect=IntegrityError("taken")
        ):
            self.assertFails(
                self.signon.submit_username(
                    "discord", pending.stash_token, "Bob"
                ),
                FailureReason.USERNAME_EXISTS,
            )
        self.assertIsNotNone(self.stash())

    def test_integrity_error_identity_linked(self) -> None:
        """A race on the identity link fails the login, not the name."""
        self.add_provider()
        pending = self.pending()

        with (
            mock.patch.object(
                self.signon, "create_user", side_effect=IntegrityError("linked")
            ),
            mock.patch.object(Identity.objects, "filter") as identity_filter,
        ):
            # Not linked when checked first, linked after the failed insert
            identity_filter.return_value.exists.side_effect = [False, True]
            self.assertFails(
                self.signon.submit_username(
                    "discord", pending.stash_token, "Bob"
                ),
                FailureReason.INVALID_STATE,
            )
        identity_filter.assert_called_with(issuer="discord", subject="42")
        self.assertIsNone(self.stash())

    def test_user_data_invalid(self) -> None:
        self.add_provider()
        pending = self.pending()

        with mock.patch.object(
            User, "clean_fields", side_effect=ValidationError("invalid")
        ):
            self.assertFails(
                self.signon.submit_username(
                    "discord", pending.stash_token, "Bob"
                ),
                FailureReason.INVALID_USERNAME,
            )
        self.assertFalse(User.objects.exists())

    def test_identity_linked_meanwhile(self) -> None:
        """If another login linked the identity, the stash is dropped."""
        self.add_provider()
        pending = self.pending()
        self.create_identity(self.create_user("Robert"))

        self.assertFails(
            self.signon.submit_username("discord", pending.stash_token, "Bob"),
            FailureReason.INVALID_STATE,
        )
        self.assertIsNone(self.stash())
        self.assertFalse(User.objects.filter(username="Bob").exists())

    def test_start_drops_stash(self) -> None:
        self.add_provider()
        pending = self.pending()
        self.start_login()
        self.assertFails(
            self.signon.submit_username("discord", pending.stash_token, "Bob"),
            FailureReason.INVALID_STATE,
        )


class SignonSubclass(Signon):
    """Signon subclass with a custom access policy."""

    def check_access(
        self,
        provider: providers.DiscordProvider,
        external: Any,
        roles: Any,
    ) -> Fail | None:
        """Refuse everyone called mallory."""
        if external.username == "mallory":
            return Fail(FailureReason.ROLE_NOT_ALLOWED, "no mallory")
        return super().check_access(provider, external, roles)


class SignonSubclassTests(SignonTestCase):
    """Test overriding the access policy in a subclass."""

    signon_class = SignonSubclass

    def test_custom_policy(self) -> None:
        self.add_provider()
        self.assertFails(
            self.login(username="mallory"), FailureReason.ROLE_NOT_ALLOWED
        )

    def test_default_policy(self) -> None:
        self.add_provider()
        self.assertIsInstance(self.login(), PendingNameChoice)
