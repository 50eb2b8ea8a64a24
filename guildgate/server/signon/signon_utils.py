# Copyright 2016-2023 Enrico Zini <enrico@debian.org>
# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Helper functions for the signon module."""

import re

from django.core.exceptions import ImproperlyConfigured

from guildgate.db.models.auth import (
    forbidden_account_name_chars,
    is_valid_account_name,
)
from guildgate.server.signon.models import ExternalIdentity

re_separators = re.compile(r"[\s_]+")


def split_full_name(name: str) -> tuple[str, str]:
    """
    Arbitrary split a full name into (first_name, last_name).

    This is better than nothing, but not a lot better than that.
    """
    # See http://www.kalzumeus.com/2010/06/17/falsehoods-programmers-believe-about-names/  # noqa
    fn = name.split()
    if len(fn) == 1:
        return fn[0], ""
    elif len(fn) == 2:
        return fn[0], fn[1]
    elif len(fn) == 3:
        return " ".join(fn[0:2]), fn[2]
    else:
        middle = len(fn) // 2
        return " ".join(fn[:middle]), " ".join(fn[middle:])


def canonicalize_submitted_name(raw: str) -> str:
    """
    Turn a free-form name into account name form.

    Forbidden characters are dropped, runs of whitespace and underscores
    become a single underscore, the first letter is title-cased and trailing
    underscores are removed. The result can be empty.
    """
    name = forbidden_account_name_chars.sub("", raw)
    name = re_separators.sub(" ", name).strip().rstrip(" _")
    if name:
        name = name[0].title() + name[1:]
    return name.replace(" ", "_").rstrip("_")


def fallback_name(identity: ExternalIdentity) -> str:
    """Return the account name used when nothing better is available."""
    return canonicalize_submitted_name(f"User{identity.id}")


def canonicalize(identity: ExternalIdentity) -> str:
    """
    Suggest a valid account name for an external identity.

    The result is deterministic for a given identity, but it is not checked
    for collisions with existing accounts.

    :raises ImproperlyConfigured: if not even the fallback name is valid
    """
    seed = identity.username or identity.display_name or ""
    if (name := canonicalize_submitted_name(seed)) and is_valid_account_name(
        name
    ):
        return name

    name = fallback_name(identity)
    if not is_valid_account_name(name):
        raise ImproperlyConfigured(
            f"fallback account name {name!r} for external identity"
            f" {identity.id!r} is not a valid account name"
        )
    return name
