from collections.abc import Callable

import httpx
import pytest

from specwiki.adapters.outbound.in_memory_key_value_store import InMemoryKeyValueStore
from specwiki.adapters.outbound.wiki_adapter import WikiAdapter
from specwiki.application.services.secure_credential_store import SecureCredentialStore
from specwiki.domain.wiki import WikiConnectionConfig

TEST_TOKEN = "ATATT3xFfGF0testTokenValue1234"
CLOUD_BASE_URL = "https://example.atlassian.net"


def page_json(
    page_id: str = "123",
    title: str = "Test Page",
    version: int = 1,
    space_key: str = "DEV",
    body: str = "<p>Hello</p>",
    with_links: bool = True,
) -> dict:
    data = {
        "id": page_id,
        "type": "page",
        "title": title,
        "space": {"key": space_key},
        "version": {"number": version},
        "body": {"storage": {"value": body, "representation": "storage"}},
        "ancestors": [{"id": "1", "title": "Root"}],
    }
    if with_links:
        data["_links"] = {
            "base": f"{CLOUD_BASE_URL}/wiki",
            "webui": f"/spaces/{space_key}/pages/{page_id}/{title.replace(' ', '+')}",
        }
    return data


@pytest.fixture
def credentials() -> SecureCredentialStore:
    return SecureCredentialStore(backend=InMemoryKeyValueStore())


@pytest.fixture
def token_ref(credentials) -> str:
    return credentials.store(TEST_TOKEN)


@pytest.fixture
def config(token_ref) -> WikiConnectionConfig:
    return WikiConnectionConfig(
        enabled=True,
        base_url=CLOUD_BASE_URL,
        token_ref=token_ref,
        email="user@example.com",
    )


@pytest.fixture
def make_adapter(config, credentials) -> Callable[..., WikiAdapter]:
    """handler(request) -> httpx.Response 로 동작하는 WikiAdapter 생성기"""
    def _make(handler, config_override: WikiConnectionConfig | None = None) -> WikiAdapter:
        current = config_override or config
        return WikiAdapter(
            config_source=lambda: current,
            credentials=credentials,
            transport=httpx.MockTransport(handler),
        )
    return _make
