# Copyright 2020-2023 Enrico Zini <enrico@debian.org>
# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Authentication backend to mark signon-managed authentication."""

from typing import Any

from django.contrib.auth.backends import ModelBackend
from django.http import HttpRequest

from guildgate.db.models import Identity, User


class SignonAuthBackend(ModelBackend):
    """
    Auth backend for external authentication.

    It authenticates users through an :py:class:`Identity` linked to them, and
    marks users authenticated via external signon providers.
    """

    def authenticate(  # type: ignore[override]
        self,
        request: HttpRequest | None,
        identity: Identity | None = None,
        **kwargs: Any,
    ) -> User | None:
        """Return the user linked to identity, if they can log in."""
        if identity is None:
            return None
        user = identity.user
        if not self.user_can_authenticate(user):
            return None
        return user
