"""Shared pytest fixtures for all tests."""

import httpx
import pytest

from helpers import FakeAssistant, FakeWeb
from skim.config import Settings
from skim.main import build_services
from skim.store import PaperStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_path=str(tmp_path / "skim.db"),
        pdf_dir=str(tmp_path / "pdfs"),
        provider_timeout=2.0,
        download_timeout=2.0,
    )


@pytest.fixture
def store(settings):
    return PaperStore(settings.database_path, settings.pdf_dir)


@pytest.fixture
def web():
    return FakeWeb()


@pytest.fixture
def assistant():
    return FakeAssistant()


@pytest.fixture
async def http_client(web):
    async with httpx.AsyncClient(transport=web.transport(), max_redirects=5) as client:
        yield client


@pytest.fixture
def services(settings, http_client, assistant):
    return build_services(settings, http_client, assistant)


@pytest.fixture
def owner():
    return "user-1"
