# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Data models for db users and their links to external identities."""

import ipaddress
import re
from typing import Any, Generic, TYPE_CHECKING, TypeVar

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.contrib.auth.models import UserManager as DjangoUserManager
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import QuerySet, UniqueConstraint

if TYPE_CHECKING:
    from django_stubs_ext.db.models import TypedModelMeta

    # https://github.com/typeddjango/django-stubs/issues/2112
    AbstractUserMeta = TypedModelMeta
else:
    TypedModelMeta = object
    AbstractUserMeta = AbstractUser.Meta

A = TypeVar("A")

#: Maximum length in bytes of an account name, once encoded as UTF-8
ACCOUNT_NAME_MAX_BYTES = 255

#: Characters that can never appear in an account name
forbidden_account_name_chars = re.compile(r"[#<>\[\]|{}%:/\x00-\x1f\x7f]")


def account_name_errors(value: str) -> list[str]:
    """
    Check value against the account naming rules.

    :return: a list of error messages, or an empty list if the name is valid
    """
    errors: list[str] = []
    if not value.strip():
        errors.append("account name cannot be empty")
        return errors

    if forbidden_account_name_chars.search(value):
        errors.append(
            "account name cannot contain control characters"
            " or any of # < > [ ] | { } % : /"
        )
    if value.endswith("_"):
        errors.append("account name cannot end with an underscore")
    if len(value.encode()) > ACCOUNT_NAME_MAX_BYTES:
        errors.append(
            f"account name cannot be longer than {ACCOUNT_NAME_MAX_BYTES} bytes"
        )

    reserved = getattr(settings, "SIGNON_RESERVED_USERNAMES", ())
    if value.casefold() in {name.casefold() for name in reserved}:
        errors.append(f"{value!r} is a reserved account name")

    try:
        ipaddress.ip_address(value)
    except ValueError:
        pass
    else:
        errors.append("account name cannot be an IP address")

    return errors


def is_valid_account_name(value: str) -> bool:
    """Check if value is a valid account name."""
    return not account_name_errors(value)


def validate_account_name(value: str) -> None:
    """Validate account names."""
    if errors := account_name_errors(value):
        raise ValidationError(
            "%(value)r is not a valid account name: %(errors)s",
            params={"value": value, "errors": "; ".join(errors)},
        )


class UserQuerySet(QuerySet["User", A], Generic[A]):
    """Custom QuerySet for User."""

    def linked(self, issuer: str) -> "UserQuerySet[A]":
        """Keep only users with an identity from the given issuer."""
        return self.filter(identities__issuer=issuer).distinct()

    def unlinked(self, issuer: str) -> "UserQuerySet[A]":
        """Keep only users without an identity from the given issuer."""
        return self.exclude(identities__issuer=issuer)


class UserManager(DjangoUserManager["User"]):
    """Manager for User model."""

    # We cannot use from_queryset or we hit this problem:
    # https://stackoverflow.com/questions/68367703/adding-custom-queryset-to-usermodel-causes-makemigrations-exception  # noqa: E501
    # Therefore we need to proxy the queryset methods here

    def linked(self, issuer: str) -> "UserQuerySet[Any]":
        """Keep only users with an identity from the given issuer."""
        return self.get_queryset().linked(issuer)

    def unlinked(self, issuer: str) -> "UserQuerySet[Any]":
        """Keep only users without an identity from the given issuer."""
        return self.get_queryset().unlinked(issuer)

    def get_queryset(self) -> UserQuerySet[Any]:
        """Use the custom QuerySet."""
        return UserQuerySet(self.model, using=self._db)


class User(AbstractUser):
    """
    Guildgate user.

    Account names follow :py:func:`validate_account_name` instead of the
    default Django username rules, so that names suggested from external
    display names can keep spaces (as underscores) and most punctuation.
    """

    username = models.CharField(
        "username",
        max_length=ACCOUNT_NAME_MAX_BYTES,
        unique=True,
        validators=[validate_account_name],
        error_messages={"unique": "A user with that username already exists."},
    )

    # mypy seems to struggle changing the manager in a subclass
    objects = UserManager()  # type: ignore[misc]

    class Meta(AbstractUserMeta):
        verbose_name = "user"
        verbose_name_plural = "users"

    def group_names(self) -> set[str]:
        """Return the names of the local groups of this user."""
        return set(self.groups.values_list("name", flat=True))


class Identity(models.Model):
    """
    Link between a local user and a user in a remote identity provider.

    A link is created exactly once, when a local account is created from a
    remote identity, and is never updated afterwards.
    """

    class Meta(TypedModelMeta):
        constraints = [
            UniqueConstraint(
                fields=["issuer", "subject"],
                name="%(app_label)s_%(class)s_unique_issuer_subject",
            ),
            UniqueConstraint(
                fields=["issuer", "user"],
                name="%(app_label)s_%(class)s_unique_issuer_user",
            ),
        ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="identities",
        on_delete=models.CASCADE,
    )
    issuer = models.CharField(
        max_length=512,
        help_text="identifier of authoritative system for this identity",
    )
    subject = models.CharField(
        max_length=512,
        help_text="identifier of the user in the issuer system",
    )
    created_at = models.DateTimeField(
        auto_now_add=True, help_text="time the link has been created"
    )
    claims = models.JSONField(
        default=dict,
        help_text="snapshot of the remote user data at link creation time",
    )

    def __str__(self) -> str:
        """Return str for the object."""
        return f"{self.issuer}:{self.subject}"
