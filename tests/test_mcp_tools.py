from conftest import TEST_TOKEN
from specwiki.adapters.inbound.mcp.tools import _mask_arguments, format_pipeline_error
from specwiki.domain.errors import (
    ErrorKind,
    PipelineError,
    escape_marker_error,
    rate_limit_error,
)


class TestMaskArguments:
    def test_token_always_hidden(self):
        masked = _mask_arguments({"token": TEST_TOKEN, "base_url": "https://example.atlassian.net"})
        assert masked == {"token": "***", "base_url": "https://example.atlassian.net"}

    def test_long_text_previewed(self):
        masked = _mask_arguments({"content": "가" * 40})
        assert masked["content"] == "가" * 20 + "... (40자)"

    def test_short_text_hidden(self):
        assert _mask_arguments({"text": "짧음"}) == {"text": "***"}


class TestFormatPipelineError:
    def test_content_error_is_dialog(self):
        error = escape_marker_error("마커 없음", has_start_marker=False, has_end_marker=False)
        text = format_pipeline_error("extract_document", error)
        assert "escapeMarker (대화상자)" in text
        assert "다른 AI 모델 사용을 고려해 보세요" in text

    def test_rate_limit_shows_retry(self):
        text = format_pipeline_error("publish_document", rate_limit_error(60))
        assert "rateLimit (알림)" in text
        assert "60초 후" in text
        assert "**재시도:** 가능" in text

    def test_attempts_listed(self):
        error = PipelineError(
            ErrorKind.CONTENT_EXTRACTION,
            "추출 실패",
            context={"attempts": [("primary", "마커 없음"), ("plain_text", "본문 부족")]},
        )
        text = format_pipeline_error("extract_document", error)
        assert "`primary`: 마커 없음" in text
        assert "`plain_text`: 본문 부족" in text

    def test_secrets_redacted(self):
        error = PipelineError(ErrorKind.NETWORK, f"전송 실패 {TEST_TOKEN}")
        assert TEST_TOKEN not in format_pipeline_error("publish_document", error, TEST_TOKEN)
