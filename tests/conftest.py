"""
Shared pytest fixtures for presse tests.

Unit tests talk to a FakeConnection (tests/helpers.py) instead of Chrome.
Integration tests need a real Chrome with --remote-debugging-port and are
marked @pytest.mark.integration.
"""

from typing import Generator

import pytest

from adapters.cdp import CdpSession
from tests.helpers import FakeConnection, chrome_script, connected_session


@pytest.fixture
def fake_chrome() -> FakeConnection:
    """A fake connection scripted like a well-behaved Chrome page."""
    return FakeConnection(chrome_script())


@pytest.fixture
def session(fake_chrome: FakeConnection) -> Generator[CdpSession, None, None]:
    """
    A connected CdpSession over fake_chrome, closed after the test.

    Example:
        def test_something(session, fake_chrome):
            fake_chrome.script["Page.navigate"] = Reply(result={"errorText": "net::ERR"})
            ...
    """
    s = connected_session(fake_chrome)
    yield s
    s.close()
