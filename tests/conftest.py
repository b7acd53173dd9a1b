from __future__ import annotations

import asyncio

import pytest

from tests.test_doubles import FakeEndpointClient


@pytest.fixture
def cancel_event() -> asyncio.Event:
    return asyncio.Event()


@pytest.fixture
def fake_client() -> FakeEndpointClient:
    return FakeEndpointClient()
