# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""
Guildgate URL Configuration.

Signon views are under ``/signon/<provider>/``: see
:py:mod:`guildgate.server.signon.urls`.
"""

from django.urls import URLPattern, URLResolver, include, path

from guildgate.server.signon.views import LogoutView

urlpatterns: list[URLPattern | URLResolver] = [
    path("logout/", LogoutView.as_view(), name="logout"),
    path(
        "signon/",
        include("guildgate.server.signon.urls", namespace="signon"),
    ),
]
