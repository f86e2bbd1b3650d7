import json
from unittest.mock import AsyncMock

import pytest

from conftest import CLOUD_BASE_URL, TEST_TOKEN
from specwiki.adapters.outbound.json_connection_config_repository import JsonConnectionConfigRepository
from specwiki.application.use_cases.configure_wiki_connection import ConfigureWikiConnectionUseCase
from specwiki.application.use_cases.test_wiki_connection import TestWikiConnectionUseCase
from specwiki.domain.errors import ErrorKind, PipelineError
from specwiki.domain.wiki import WikiConnectionConfig


@pytest.fixture
def repo(tmp_path):
    return JsonConnectionConfigRepository(tmp_path / "config" / "wiki_connection.json")


@pytest.fixture
def wiki_port():
    port = AsyncMock()
    port.test_connection.return_value = True
    return port


@pytest.fixture
def tester(wiki_port, repo):
    return TestWikiConnectionUseCase(wiki_port, repo)


@pytest.fixture
def configure(repo, credentials, tester):
    return ConfigureWikiConnectionUseCase(repo, credentials, tester)


class TestJsonConnectionConfigRepository:
    def test_missing_file_returns_default(self, repo):
        assert repo.load() == WikiConnectionConfig()

    def test_save_and_load(self, repo, config):
        repo.save(config)
        loaded = repo.load()
        assert loaded.base_url == config.base_url
        assert loaded.token_ref == config.token_ref
        assert loaded.is_configuration_complete

    def test_file_never_contains_token(self, repo, config):
        repo.save(config)
        text = repo.path.read_text(encoding="utf-8")
        assert TEST_TOKEN not in text
        assert json.loads(text)["tokenRef"] == config.token_ref

    def test_broken_file_is_parsing_error(self, repo):
        repo.path.parent.mkdir(parents=True)
        repo.path.write_text("{not json", encoding="utf-8")
        with pytest.raises(PipelineError) as exc:
            repo.load()
        assert exc.value.kind == ErrorKind.PARSING

    def test_non_object_is_parsing_error(self, repo):
        repo.path.parent.mkdir(parents=True)
        repo.path.write_text("[]", encoding="utf-8")
        with pytest.raises(PipelineError) as exc:
            repo.load()
        assert exc.value.kind == ErrorKind.PARSING


class TestTestWikiConnection:
    @pytest.mark.asyncio
    async def test_success_marks_valid(self, tester, repo, config):
        repo.save(config)
        result = await tester.execute()
        assert result["connected"] is True
        assert result["api_base_url"] == f"{CLOUD_BASE_URL}/wiki/rest/api"
        assert result["is_cloud"] is True
        saved = repo.load()
        assert saved.is_valid
        assert saved.last_validated is not None

    @pytest.mark.asyncio
    async def test_failure_marks_invalid_and_raises(self, tester, repo, config, wiki_port):
        repo.save(config.mark_validated(True))
        wiki_port.test_connection.side_effect = PipelineError(ErrorKind.AUTHENTICATION, "인증 실패")
        with pytest.raises(PipelineError):
            await tester.execute()
        assert not repo.load().is_valid

    @pytest.mark.asyncio
    async def test_unconfigured(self, tester, wiki_port):
        with pytest.raises(PipelineError) as exc:
            await tester.execute()
        assert exc.value.kind == ErrorKind.VALIDATION
        wiki_port.test_connection.assert_not_awaited()


class TestConfigureWikiConnection:
    @pytest.mark.asyncio
    async def test_first_configuration(self, configure, repo, credentials):
        result = await configure.execute("http://example.atlassian.net/wiki/rest/api/", "User@Example.com", TEST_TOKEN)

        assert result["base_url"] == "https://example.atlassian.net"
        assert result["api_base_url"] == "https://example.atlassian.net/wiki/rest/api"
        assert result["email"] == "user@example.com"
        assert result["configured"] is True
        assert result["verified"] is True
        assert TEST_TOKEN not in json.dumps(result)

        saved = repo.load()
        assert saved.is_valid
        assert credentials.get(saved.token_ref) == TEST_TOKEN

    @pytest.mark.asyncio
    async def test_token_required_first_time(self, configure):
        with pytest.raises(PipelineError) as exc:
            await configure.execute(CLOUD_BASE_URL, "user@example.com")
        assert exc.value.kind == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_new_token_rotates_old_ref(self, configure, repo, credentials):
        await configure.execute(CLOUD_BASE_URL, "user@example.com", TEST_TOKEN, verify=False)
        old_ref = repo.load().token_ref

        await configure.execute(CLOUD_BASE_URL, "user@example.com", "ATATT3xFfGF0anotherToken99", verify=False)
        new_ref = repo.load().token_ref

        assert new_ref != old_ref
        assert credentials.get(old_ref) is None
        assert credentials.get(new_ref) == "ATATT3xFfGF0anotherToken99"

    @pytest.mark.asyncio
    async def test_keeps_token_when_omitted(self, configure, repo):
        await configure.execute(CLOUD_BASE_URL, "user@example.com", TEST_TOKEN)
        ref = repo.load().token_ref

        result = await configure.execute(CLOUD_BASE_URL, "user@example.com", verify=False)

        saved = repo.load()
        assert saved.token_ref == ref
        assert saved.is_valid
        assert result["verified"] is False

    @pytest.mark.asyncio
    async def test_changed_target_resets_validation(self, configure, repo):
        await configure.execute(CLOUD_BASE_URL, "user@example.com", TEST_TOKEN)
        await configure.execute("https://other.atlassian.net", "user@example.com", verify=False)
        assert not repo.load().is_valid

    @pytest.mark.asyncio
    async def test_verify_failure_is_reported_not_raised(self, configure, wiki_port):
        wiki_port.test_connection.side_effect = PipelineError(ErrorKind.AUTHENTICATION, "Confluence 인증 실패")
        result = await configure.execute(CLOUD_BASE_URL, "user@example.com", TEST_TOKEN)
        assert result["verified"] is False
        assert result["verify_error_kind"] == "authentication"

    @pytest.mark.asyncio
    async def test_invalid_inputs(self, configure):
        with pytest.raises(PipelineError):
            await configure.execute("not a url", "user@example.com", TEST_TOKEN)
        with pytest.raises(PipelineError):
            await configure.execute(CLOUD_BASE_URL, "not-an-email", TEST_TOKEN)
