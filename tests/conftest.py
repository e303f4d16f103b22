# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.

"""Module for test configurations shared by every test directory."""

import os

# Settings are read when the mediagrab modules are imported, select the
# testing environment before any of them is.
os.environ.setdefault("MEDIAGRAB_ENV", "testing")

from logging import LogRecord  # noqa: E402

import pytest  # noqa: E402

from tests.types import FilterCaplogFixture  # noqa: E402


@pytest.fixture(scope="session", name="filter_caplog")
def fixture_filter_caplog() -> FilterCaplogFixture:
    """
    Return a function that will filter pytest captured log records for a given logger
    name
    """

    def filter_caplog(records: list[LogRecord], logger_name: str) -> list[LogRecord]:
        """
        Filter pytest captured log records for a given logger name
        """
        return [record for record in records if record.name == logger_name]

    return filter_caplog
