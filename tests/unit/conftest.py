# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.

"""Module for test configurations for the unit test directory."""

from pathlib import Path

import httpx
import pytest

from mediagrab.utils.http_client import create_http_client
from mediagrab.utils.remote_fetcher import RemoteFetcher
from tests.unit.types import USER_AGENTS, FetcherFactory, Handler


@pytest.fixture(name="fetcher_factory")
def fixture_fetcher_factory() -> FetcherFactory:
    """Return a function that creates a `RemoteFetcher` served by a request handler.

    The handler may be sync or async, it is wrapped in `httpx.MockTransport` so that no
    request leaves the process.
    """

    def fetcher_factory(handler: Handler) -> RemoteFetcher:
        client = create_http_client(transport=httpx.MockTransport(handler))
        return RemoteFetcher(client=client, user_agents=USER_AGENTS, retry_wait_initial=0.0)

    return fetcher_factory


@pytest.fixture(name="favicon_dir")
def fixture_favicon_dir(tmp_path: Path) -> Path:
    """Return an empty favicon directory."""
    favicon_dir = tmp_path / "favicons"
    favicon_dir.mkdir()
    return favicon_dir
