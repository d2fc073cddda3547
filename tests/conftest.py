import asyncio

import pytest


class FakeResponse:
    def __init__(self, status=200, body=""):
        self.status = status
        self._body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def text(self, encoding=None, errors=None):
        return self._body


class FakeSession:
    """
    Stand-in for aiohttp.ClientSession.

    `responses` maps a URL to a list of outcomes consumed in order; an outcome
    is a (status, body) tuple or an exception instance to raise.
    """

    def __init__(self, responses=None):
        self.responses = {url: list(items) for url, items in (responses or {}).items()}
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append(url)
        queue = self.responses.get(url)
        if not queue:
            return FakeResponse(404, "")
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, BaseException):
            raise outcome
        status, body = outcome
        return FakeResponse(status, body)

    async def close(self):
        pass


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def run():
    return asyncio.run
