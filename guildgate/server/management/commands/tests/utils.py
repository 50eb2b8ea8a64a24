# Copyright © The Guildgate Developers
# See the AUTHORS file at the top-level directory of this distribution
#
# This file is part of Guildgate. It is subject to the license terms
# in the LICENSE file found in the top-level directory of this
# distribution. No part of Guildgate, including this file, may be copied,
# modified, propagated, or distributed except according to the terms
# contained in the LICENSE file.

"""Helpers to check the rich tables printed by management commands."""

import contextlib
import unittest
from collections.abc import Generator
from dataclasses import dataclass, field
from typing import Any
from unittest import mock

from rich.table import Table


@dataclass
class TableOutput:
    """A printed table, filled in when the checked block exits."""

    table: Table = field(default_factory=Table)

    @property
    def title(self) -> str | None:
        """Title of the table, if any."""
        return None if self.table.title is None else str(self.table.title)

    def col(self, index: int) -> list[Any]:
        """Cells of a column."""
        return list(self.table.columns[index].cells)

    def row(self, index: int) -> list[Any]:
        """Cells of a row."""
        return [self.col(i)[index] for i in range(len(self.table.columns))]


class TabularOutputTests(unittest.TestCase):
    """Assertions on tables printed with rich."""

    def _printed_tables(self, rprint: mock.Mock) -> list[Table]:
        tables = [call.args[0] for call in rprint.call_args_list]
        for table in tables:
            self.assertIsInstance(table, Table)
        return tables

    @contextlib.contextmanager
    def assertPrintsTable(self) -> Generator[TableOutput, None, None]:
        """Check that the block prints exactly one table."""
        output = TableOutput()
        with mock.patch("rich.print") as rprint:
            yield output
        tables = self._printed_tables(rprint)
        self.assertEqual(len(tables), 1)
        output.table = tables[0]

    @contextlib.contextmanager
    def assertPrintsTables(self) -> Generator[list[TableOutput], None, None]:
        """Check that the block prints one or more tables."""
        output: list[TableOutput] = []
        with mock.patch("rich.print") as rprint:
            yield output
        tables = self._printed_tables(rprint)
        self.assertNotEqual(tables, [])
        output.extend(TableOutput(table) for table in tables)
