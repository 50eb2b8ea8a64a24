# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Utility methods used in management module."""

import abc
import datetime
import io
from collections.abc import Collection, Generator, Iterable
from dataclasses import dataclass
from typing import Any, ClassVar, IO, cast

import rich
import yaml
from rich.table import Table

from guildgate.db.models import User
from guildgate.server.signon.membership import MembershipStatus


@dataclass
class Column:
    """Represent a column in a tabular output."""

    #: Name in YAML
    name: str
    #: Label in tables
    label: str

    def to_data(self, value: Any) -> Any:
        """Return a value for YAML."""
        return value

    def to_rich(self, value: Any) -> str:
        """Return a value for human-readable output."""
        match value:
            case None:
                return "-"
            case datetime.datetime():
                return value.isoformat()
            case _:
                return str(value)


@dataclass
class SetColumn(Column):
    """Column displaying a collection of strings."""

    def to_data(self, value: Any) -> Any:
        """Return a sorted list for YAML."""
        return sorted(value)

    def to_rich(self, value: Any) -> str:
        """Return a comma-separated list for human-readable output."""
        if not value:
            return "-"
        return ", ".join(sorted(value))


class Printer(abc.ABC):
    """Print tabular values in human or machine readable formats."""

    #: Description of tabular columns
    columns: ClassVar[list[Column]]

    #: Title of the table in human-readable output
    title: ClassVar[str | None] = None

    def __init__(self, yaml: bool) -> None:
        """
        Choose the output type.

        :param yaml: use machine-readable YAML
        """
        self.yaml = yaml

    @abc.abstractmethod
    def rows(self, items: Iterable[Any]) -> Generator[list[Any], None, None]:
        """Generate rows to display."""

    def print(
        self, items: Iterable[Any], file: IO[str] | io.TextIOBase | None = None
    ) -> None:
        """Generate and print output."""
        if self.yaml:
            self.print_yaml(items, file)
        else:
            self.print_rich(items, file)

    def to_data(self, items: Iterable[Any]) -> list[dict[str, Any]]:
        """Generate machine-readable data."""
        return [
            {col.name: col.to_data(val) for col, val in zip(self.columns, row)}
            for row in self.rows(items)
        ]

    def print_yaml(
        self, items: Iterable[Any], file: IO[str] | io.TextIOBase | None = None
    ) -> None:
        """Generate machine-readable YAML."""
        print(yaml.dump(self.to_data(items)), file=file)

    def print_rich(
        self, items: Iterable[Any], file: IO[str] | io.TextIOBase | None = None
    ) -> None:
        """Generate human-readable output."""
        table = Table(box=rich.box.MINIMAL_DOUBLE_HEAD, title=self.title)
        for col in self.columns:
            table.add_column(col.label)
        for row in self.rows(items):
            table.add_row(
                *(col.to_rich(val) for col, val in zip(self.columns, row))
            )
        rich.print(table, file=cast(IO[str], file))


class MembershipStatuses(Printer):
    """Display the membership status of linked accounts."""

    title = "Linked accounts"

    columns = [
        Column("user", "User"),
        Column("external_id", "External ID"),
        Column("external_username", "External user"),
        Column("access", "Access"),
        Column("reason", "Reason"),
        SetColumn("roles", "Roles"),
        SetColumn("expected_groups", "Expected groups"),
        SetColumn("current_groups", "Current groups"),
        Column("in_sync", "In sync"),
        Column("disabled", "Disabled"),
    ]

    def __init__(self, yaml: bool, role_names: dict[str, str]) -> None:
        """Use role_names to display role ids."""
        super().__init__(yaml)
        self.role_names = role_names

    def _role_names(self, roles: Collection[str]) -> list[str]:
        return [self.role_names.get(role, role) for role in roles]

    def rows(
        self, items: Iterable[MembershipStatus]
    ) -> Generator[list[Any], None, None]:
        """Generate rows to display."""
        for status in items:
            yield [
                status.user.username,
                status.external_id,
                status.external_username,
                status.has_access,
                str(status.reason) if status.reason else None,
                self._role_names(status.roles),
                status.expected_groups,
                status.current_groups,
                status.in_sync,
                status.disabled,
            ]


class Users(Printer):
    """Display a list of users."""

    title = "Accounts without a link"

    columns = [
        Column("username", "User"),
        Column("email", "Email"),
        Column("active", "Active"),
        Column("date_joined", "Joined"),
    ]

    def rows(self, items: Iterable[User]) -> Generator[list[Any], None, None]:
        """Generate rows to display."""
        for user in items:
            yield [user.username, user.email, user.is_active, user.date_joined]
