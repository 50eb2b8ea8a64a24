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
Middleware giving views access to signon.

It adds a `request.signon` member that is a Signon object, used by the signon
views to run logins through the configured providers.
"""
from collections.abc import Callable
from typing import Protocol, cast, runtime_checkable

import django.http
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured, MiddlewareNotUsed
from django.utils.module_loading import import_string

from guildgate.server.signon.signon import Signon


@runtime_checkable
class RequestSignonProtocol(Protocol):
    """A Django request that was processed by :py:class:`SignonMiddleware`."""

    signon: Signon


def get_signon_class() -> type[Signon]:
    """
    Return the Signon class configured in ``SIGNON_CLASS``.

    :raises ImproperlyConfigured: if the setting does not name a Signon
                                  subclass
    """
    if (path := getattr(settings, "SIGNON_CLASS", None)) is None:
        return Signon
    try:
        signon_class = import_string(path)
    except ImportError as e:
        raise ImproperlyConfigured(f"cannot import SIGNON_CLASS {path}: {e}")
    if not isinstance(signon_class, type) or not issubclass(
        signon_class, Signon
    ):
        raise ImproperlyConfigured(f"{path} is not a subclass of Signon")
    return signon_class


class SignonMiddleware:
    """Attach a Signon object to each request."""

    signon_class: type[Signon]

    def __init__(
        self,
        get_response: Callable[
            [django.http.HttpRequest], django.http.HttpResponse
        ],
    ) -> None:
        """Middleware API entry point."""
        if not getattr(settings, "SIGNON_PROVIDERS", ()):
            raise MiddlewareNotUsed()
        self.signon_class = get_signon_class()
        self.get_response = get_response

    def __call__(
        self, request: django.http.HttpRequest
    ) -> django.http.HttpResponse:
        """Middleware API entry point."""
        # Signon views log users in, and need request.user and the session
        if not hasattr(request, "user"):
            raise ImproperlyConfigured(
                "The signon middleware requires the authentication middleware"
                " to be installed. Edit your MIDDLEWARE setting to insert"
                " 'django.contrib.auth.middleware.AuthenticationMiddleware'"
                " before the SignonMiddleware class."
            )

        cast(RequestSignonProtocol, request).signon = self.signon_class(request)
        return self.get_response(request)
