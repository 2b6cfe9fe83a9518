"""Pytest configuration and fixtures."""

from typing import Generator

import pytest
import requests_mock

from fiabot.models import Document
from tests.fakes import make_document


@pytest.fixture
def mock_requests() -> Generator[requests_mock.Mocker, None, None]:
    """Mock HTTP requests for testing."""
    with requests_mock.Mocker() as m:
        yield m


@pytest.fixture
def document() -> Document:
    """A plain decision document."""
    return make_document()
