"""Shared fixtures: an in-memory verifier and a small search config.

The fake verifier never touches the network. Latency is simulated with
``asyncio.sleep()`` so completion order can be forced independently of
dispatch order.
"""

import asyncio
from dataclasses import dataclass, field

import pytest

from vodforce.config import SearchConfig
from vodforce.models import Hit, Miss, TransientFailure

HOSTS = ("d1m7jfoe9zdc1j.cloudfront.net", "d2vjef5jvl6bfs.cloudfront.net")


@dataclass
class FakeVerifier:
    """Answers from fixed URL sets and records every call."""

    hits: set = field(default_factory=set)
    transient: set = field(default_factory=set)
    delays: dict = field(default_factory=dict)
    default_delay: float = 0
    on_call: object = None
    calls: list = field(default_factory=list)

    async def verify_with_retry(self, url, value=None, halted=None):
        self.calls.append((url, value))
        if self.on_call is not None:
            self.on_call(self)
        await asyncio.sleep(self.delays.get(url, self.default_delay))
        if url in self.hits:
            return Hit(url, value)
        if url in self.transient:
            return TransientFailure(url, "HTTP 503")
        return Miss(url)

    @property
    def values(self):
        return [value for _, value in self.calls]


@pytest.fixture()
def config():
    return SearchConfig(hosts=HOSTS, threads=8, retries=0, backoff_base=0, backoff_max=0)


@pytest.fixture()
def fake_verifier():
    return FakeVerifier()
