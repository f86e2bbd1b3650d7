import json
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import CLOUD_BASE_URL, TEST_TOKEN, page_json
from specwiki.application.use_cases.publish_document import PublishDocumentUseCase
from specwiki.domain.document import OutputFormat
from specwiki.domain.errors import ErrorKind, PipelineError
from specwiki.domain.publish import PublishOperation, PublishState
from specwiki.domain.wiki import WikiConnectionConfig, WikiPage

PARENT_URL = f"{CLOUD_BASE_URL}/wiki/spaces/DEV/pages/100/Parent"
PAGE_URL = f"{CLOUD_BASE_URL}/wiki/spaces/DEV/pages/123/Test+Page"


class RecordingWiki:
    """httpx.MockTransport 핸들러: 요청을 기록하고 경로별로 응답합니다."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"message": "not found"})
        return self.routes[key](request)


@pytest.fixture
def make_use_case(make_adapter, config, credentials):
    def _make(handler, config_override: WikiConnectionConfig | None = None):
        current = config_override or config
        return PublishDocumentUseCase(
            wiki_port=make_adapter(handler, current),
            config_source=lambda: current,
            credentials=credentials,
        )
    return _make


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_under_parent(self, make_use_case):
        wiki = RecordingWiki({
            ("GET", "/wiki/rest/api/content/100"): lambda r: httpx.Response(
                200, json=page_json(page_id="100", title="Parent")),
            ("POST", "/wiki/rest/api/content"): lambda r: httpx.Response(
                200, json=page_json(page_id="123", title="Test Page")),
        })
        events = []

        result = await make_use_case(wiki).create(
            PARENT_URL, "Test Page", "# 제목\n\n본문", OutputFormat.MARKDOWN, on_progress=events.append,
        )

        assert result.success
        assert result.operation is PublishOperation.CREATE
        assert result.page_id == "123"
        assert result.page_url == PAGE_URL
        assert result.detailed_message == f'Page "Test Page" successfully created at {PAGE_URL}'

        payload = json.loads(wiki.requests[-1].content)
        assert payload["ancestors"] == [{"id": "100"}]
        assert payload["space"] == {"key": "DEV"}
        assert "<h1>제목</h1>" in payload["body"]["storage"]["value"]

        assert [e.step for e in events] == ["validating", "writing", "finalizing", "succeeded"]
        assert [e.progress for e in events] == [0.1, 0.6, 0.9, 1.0]
        assert events[-1].is_complete
        assert not any(e.is_error for e in events)

    @pytest.mark.asyncio
    async def test_conflict_emits_error_before_result(self, make_use_case):
        wiki = RecordingWiki({
            ("GET", "/wiki/rest/api/content/100"): lambda r: httpx.Response(
                200, json=page_json(page_id="100", title="Parent")),
            ("POST", "/wiki/rest/api/content"): lambda r: httpx.Response(409, json={"message": "exists"}),
        })
        events = []

        run = await make_use_case(wiki).create_run(
            PARENT_URL, "Test Page", "<p>본문</p>", OutputFormat.CONFLUENCE, on_progress=events.append,
        )

        assert not run.result.success
        assert "Test Page" in run.result.error_message
        assert run.state is PublishState.FAILED
        error_event = events[-1]
        assert error_event.is_error
        assert error_event.is_complete
        assert error_event.step == "writing"
        assert error_event.progress == 0.6
        progresses = [e.progress for e in events]
        assert progresses == sorted(progresses)

    @pytest.mark.asyncio
    async def test_empty_title_fails_without_network(self, make_use_case):
        wiki = RecordingWiki({})
        result = await make_use_case(wiki).create(PARENT_URL, "   ", "본문", OutputFormat.MARKDOWN)
        assert not result.success
        assert wiki.requests == []

    @pytest.mark.asyncio
    async def test_parent_url_without_id(self, make_use_case):
        wiki = RecordingWiki({})
        result = await make_use_case(wiki).create(
            f"{CLOUD_BASE_URL}/wiki/spaces/DEV/overview", "T", "본문", OutputFormat.MARKDOWN,
        )
        assert not result.success
        assert "페이지 ID" in result.error_message
        assert wiki.requests == []

    @pytest.mark.asyncio
    async def test_unconfigured_connection(self, make_use_case):
        wiki = RecordingWiki({})
        result = await make_use_case(wiki, WikiConnectionConfig()).create(
            PARENT_URL, "T", "본문", OutputFormat.MARKDOWN,
        )
        assert not result.success
        assert "설정" in result.error_message


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_backs_up_and_bumps_version(self, make_use_case):
        wiki = RecordingWiki({
            ("GET", "/wiki/rest/api/content/123"): lambda r: httpx.Response(
                200, json=page_json(version=7, body="<p>이전 본문</p>")),
            ("PUT", "/wiki/rest/api/content/123"): lambda r: httpx.Response(
                200, json=page_json(version=8)),
        })
        events = []

        run = await make_use_case(wiki).update_run(
            PAGE_URL, "## 새 본문", OutputFormat.MARKDOWN, on_progress=events.append,
        )

        assert run.result.success
        assert run.result.operation is PublishOperation.UPDATE
        assert run.backup.version == 7
        assert run.backup.content == "<p>이전 본문</p>"
        payload = json.loads(wiki.requests[-1].content)
        assert payload["version"] == {"number": 8}
        assert payload["title"] == "Test Page"
        assert [e.step for e in events] == ["validating", "backing_up", "writing", "finalizing", "succeeded"]
        assert run.to_dict()["backup"] == {"pageId": "123", "title": "Test Page", "version": 7}

    @pytest.mark.asyncio
    async def test_update_with_new_title(self, make_use_case):
        wiki = RecordingWiki({
            ("GET", "/wiki/rest/api/content/123"): lambda r: httpx.Response(200, json=page_json()),
            ("PUT", "/wiki/rest/api/content/123"): lambda r: httpx.Response(
                200, json=page_json(title="Renamed", version=2)),
        })
        result = await make_use_case(wiki).update(PAGE_URL, "<p>x</p>", OutputFormat.CONFLUENCE, title="Renamed")
        assert result.success
        assert result.title == "Renamed"
        assert json.loads(wiki.requests[-1].content)["title"] == "Renamed"

    @pytest.mark.asyncio
    async def test_missing_page_fails_in_backup(self, make_use_case):
        wiki = RecordingWiki({})
        events = []
        run = await make_use_case(wiki).update_run(
            PAGE_URL, "본문", OutputFormat.MARKDOWN, on_progress=events.append,
        )
        assert not run.result.success
        assert run.backup is None
        assert events[-1].step == "backing_up"
        assert events[-1].progress == 0.3


class TestSecrets:
    @pytest.mark.asyncio
    async def test_token_never_in_result(self, config, credentials):
        port = AsyncMock()
        port.get_page.side_effect = RuntimeError(f"socket closed while sending {TEST_TOKEN}")
        use_case = PublishDocumentUseCase(port, lambda: config, credentials)
        events = []

        result = await use_case.create(PARENT_URL, "T", "본문", OutputFormat.MARKDOWN, on_progress=events.append)

        assert not result.success
        assert TEST_TOKEN not in result.error_message
        assert TEST_TOKEN not in events[-1].error_message

    @pytest.mark.asyncio
    async def test_auth_failure_message_is_redacted(self, make_use_case):
        wiki = RecordingWiki({
            ("GET", "/wiki/rest/api/content/100"): lambda r: httpx.Response(
                401, json={"message": f"bad credentials {TEST_TOKEN}"}),
        })
        result = await make_use_case(wiki).create(PARENT_URL, "T", "본문", OutputFormat.MARKDOWN)
        assert not result.success
        assert TEST_TOKEN not in result.error_message


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_callback_error_does_not_abort(self, config, credentials):
        port = AsyncMock()
        port.get_page.return_value = WikiPage(id="100", title="Parent", url=PARENT_URL, version=1, space_key="DEV")
        port.create_page.return_value = WikiPage(id="123", title="T", url=PAGE_URL, version=1, space_key="DEV")
        use_case = PublishDocumentUseCase(port, lambda: config, credentials)

        def broken_callback(progress):
            raise ValueError("ui gone")

        result = await use_case.create(PARENT_URL, "T", "본문", OutputFormat.MARKDOWN, on_progress=broken_callback)
        assert result.success

    @pytest.mark.asyncio
    async def test_adapter_error_kind_is_kept_in_message(self, config, credentials):
        port = AsyncMock()
        port.get_page.side_effect = PipelineError(ErrorKind.AUTHORIZATION, "Confluence 접근 권한이 없습니다")
        use_case = PublishDocumentUseCase(port, lambda: config, credentials)
        result = await use_case.create(PARENT_URL, "T", "본문", OutputFormat.MARKDOWN)
        assert result.error_message == "Confluence 접근 권한이 없습니다"
