# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""URLs for signon views."""

from django.urls import path

from guildgate.server.signon import views

app_name = "signon"

urlpatterns = [
    path("<str:name>/login/", views.LoginView.as_view(), name="login"),
    path("<str:name>/callback/", views.CallbackView.as_view(), name="callback"),
    path("<str:name>/username/", views.UsernameView.as_view(), name="username"),
]
