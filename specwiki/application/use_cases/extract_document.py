import logging

from specwiki.application.services.fallback_processor import FallbackProcessor
from specwiki.domain.document import Document, OutputFormat
from specwiki.domain.errors import validation_error

logger = logging.getLogger(__name__)


def parse_output_format(value: str) -> OutputFormat:
    try:
        return OutputFormat((value or "").strip().lower())
    except ValueError:
        raise validation_error(
            f"지원하지 않는 출력 형식입니다: '{value}'",
            field="output_format",
            recovery_action="markdown 또는 confluence 중 하나를 선택하세요",
        )


class ExtractDocumentUseCase:
    """LLM 원문 응답에서 명세 문서를 추출하는 Use Case (폴백 체인 적용)"""

    def __init__(self, fallback_processor: FallbackProcessor):
        self._processor = fallback_processor

    def execute(self, raw_text: str, output_format: str) -> Document:
        target = parse_output_format(output_format)
        logger.info(
            "문서 추출 요청: format=%s, 원문 길이=%d", target.value, len(raw_text or ""),
        )
        return self._processor.extract_content(raw_text, target)
