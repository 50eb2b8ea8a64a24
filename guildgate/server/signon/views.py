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
Views needed to interact with external authentication providers.

The logout hook is implemented as a mixin for the normal
django.contrib.auth.LogoutView.
"""

import logging
from typing import Any

from django import http
from django.conf import settings
from django.contrib import auth
from django.contrib.auth import views as auth_views
from django.core.exceptions import ImproperlyConfigured
from django.http import HttpRequest, HttpResponse, HttpResponseBase
from django.shortcuts import redirect, render
from django.utils.decorators import method_decorator
from django.utils.http import url_has_allowed_host_and_scheme
from django.views.decorators.cache import never_cache
from django.views.generic import View

from guildgate.server.signon.exceptions import FailureReason
from guildgate.server.signon.middleware import RequestSignonProtocol
from guildgate.server.signon.signon import (
    Fail,
    Pass,
    PendingNameChoice,
    Signon,
    SignonResult,
)

log = logging.getLogger("guildgate.server.signon")

#: Session key storing where to go after a successful login
NEXT_URL_SESSION_KEY = "signon_next_url"

#: Failures for which the user can pick another name
RETRY_NAME_REASONS = frozenset(
    (FailureReason.INVALID_USERNAME, FailureReason.USERNAME_EXISTS)
)


class SignonLogoutMixin:
    """Mixin to drop signon data in a logout view."""

    @method_decorator(never_cache)
    def dispatch(
        self, request: HttpRequest, *args: Any, **kwargs: Any
    ) -> HttpResponse:
        """Wrap the normal logout to also drop signon data."""
        if signon := getattr(request, "signon", None):
            signon.logout_identities()
        assert isinstance(self, View)
        return super().dispatch(request, *args, **kwargs)


class LogoutView(SignonLogoutMixin, auth_views.LogoutView):
    """Log out, also dropping signon data."""


class SignonViewMixin(View):
    """Common functions for signon views."""

    @property
    def signon(self) -> Signon:
        """Return the Signon object for the request."""
        assert isinstance(self.request, RequestSignonProtocol)
        return self.request.signon

    def dispatch(
        self, request: HttpRequest, *args: Any, **kwargs: Any
    ) -> HttpResponseBase:
        """Return 404 for unknown providers."""
        if not isinstance(request, RequestSignonProtocol):
            raise http.Http404
        try:
            request.signon.get_provider(self.kwargs["name"])
        except ImproperlyConfigured:
            raise http.Http404
        return super().dispatch(request, *args, **kwargs)

    def render_failure(self, result: Fail) -> HttpResponse:
        """Render the page explaining a failed login."""
        return render(
            self.request,
            "signon/failed.html",
            {"reason": result.reason, "message": result.message},
            status=403,
        )

    def render_username_form(
        self, pending: PendingNameChoice, error: Fail | None = None
    ) -> HttpResponse:
        """Render the form to choose an account name."""
        return render(
            self.request,
            "signon/choose_username.html",
            {
                "provider_name": self.kwargs["name"],
                "candidate": pending.candidate,
                "stash_token": pending.stash_token,
                "error": error,
            },
        )

    def login(self, result: Pass) -> HttpResponse:
        """Log in the user from a successful result."""
        user = auth.authenticate(self.request, identity=result.identity)
        if user is None:
            return self.render_failure(
                Fail(FailureReason.ACCOUNT_DISABLED, f"{result.user}")
            )
        auth.login(self.request, user)
        next_url = self.request.session.pop(NEXT_URL_SESSION_KEY, None)
        if not next_url:
            next_url = getattr(settings, "SIGNON_DEFAULT_REDIRECT", "/")
        return redirect(next_url)

    def handle_result(self, result: SignonResult) -> HttpResponse:
        """Turn a signon result into a response."""
        match result:
            case Pass():
                return self.login(result)
            case PendingNameChoice():
                return redirect("signon:username", self.kwargs["name"])
            case Fail():
                return self.render_failure(result)
        raise AssertionError(f"unexpected signon result {result!r}")


class LoginView(SignonViewMixin):
    """Start a login with an external provider."""

    def get(
        self, request: HttpRequest, *args: Any, **kwargs: Any
    ) -> HttpResponseBase:
        """Remember ?next and redirect to the provider."""
        next_url = request.GET.get("next")
        if next_url and url_has_allowed_host_and_scheme(
            next_url,
            allowed_hosts={request.get_host()},
            require_https=request.is_secure(),
        ):
            request.session[NEXT_URL_SESSION_KEY] = next_url
        else:
            request.session.pop(NEXT_URL_SESSION_KEY, None)
        return redirect(self.signon.start(self.kwargs["name"]))


class CallbackView(SignonViewMixin):
    """
    Handle a callback from an external authentication provider.

    This is called by the provider after the user authorized the login.
    """

    def get(
        self, request: HttpRequest, *args: Any, **kwargs: Any
    ) -> HttpResponseBase:
        """Validate the callback and log in or continue account creation."""
        result = self.signon.handle_callback(self.kwargs["name"], request.GET)
        return self.handle_result(result)


class UsernameView(SignonViewMixin):
    """Choose the account name of a new local user."""

    def get(
        self, request: HttpRequest, *args: Any, **kwargs: Any
    ) -> HttpResponseBase:
        """Show the suggested account name."""
        if (pending := self.signon.pending(self.kwargs["name"])) is None:
            return self.render_failure(
                Fail(FailureReason.INVALID_STATE, "no account creation")
            )
        return self.render_username_form(pending)

    def post(
        self, request: HttpRequest, *args: Any, **kwargs: Any
    ) -> HttpResponseBase:
        """Create the account with the submitted name."""
        name = self.kwargs["name"]
        result = self.signon.submit_username(
            name,
            request.POST.get("stash_token", ""),
            request.POST.get("username", ""),
        )
        if isinstance(result, Fail) and result.reason in RETRY_NAME_REASONS:
            if (pending := self.signon.pending(name)) is not None:
                return self.render_username_form(pending, error=result)
        return self.handle_result(result)
