import logging
import re
from collections.abc import Callable, Iterator

from specwiki.application.services.content_extractor import extractor_for
from specwiki.application.services.format_converter import FormatConverter, detect_format
from specwiki.domain.document import Document, OutputFormat
from specwiki.domain.errors import ErrorKind, PipelineError

logger = logging.getLogger(__name__)

Strategy = Callable[[str, OutputFormat], Document]

# 느슨한 마커: 공백/대소문자 변형과 자주 보이는 변종
_LENIENT_PATTERNS = (
    re.compile(r"@@@\s*START\s*@@@(.*?)@@@\s*END\s*@@@", re.IGNORECASE | re.DOTALL),
    re.compile(r"@@START@@(.*?)@@END@@", re.DOTALL),
    re.compile(r"START@@@(.*?)@@@END", re.DOTALL),
    re.compile(r"<start>(.*?)</start>", re.IGNORECASE | re.DOTALL),
)
_MARKER_REMNANT = re.compile(r"@{2,3}\s*(?:START|END)\s*@{2,3}|</?start>", re.IGNORECASE)

_MD_HEADING_LINE = re.compile(r"^\s{0,3}#{1,6}\s+\S", re.MULTILINE)
_HTML_FIRST_BLOCK = re.compile(r"<(h[1-6]|p|ul|ol|table|div)\b", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_CHATTY_PREFIX = re.compile(
    r"^\s*(sure|here|certainly|of course|물론|다음은|아래는)\b.*$",
    re.IGNORECASE,
)
_KEYWORD_SECTIONS = (
    ("user story", "User Story"),
    ("acceptance criteria", "Acceptance Criteria"),
    ("problem", "Problem"),
    ("사용자 스토리", "User Story"),
    ("인수 조건", "Acceptance Criteria"),
    ("문제", "Problem"),
)
_DEFAULT_TITLE = "Technical Specification"
_MIN_PLAIN_TEXT_LENGTH = 20
_MAX_CUE_LINE_LENGTH = 60


class FallbackProcessor:
    """LLM 응답 추출 폴백 체인.

    전략은 (이름, 함수) 목록으로 순서가 고정되어 있습니다:
    primary → lenient_markers → cross_format → plain_text
    모두 실패하면 시도한 전략과 실패 사유를 모두 담은 contentExtraction 오류 하나를 발생시킵니다.
    """

    def __init__(self, converter: FormatConverter | None = None):
        self._converter = converter or FormatConverter()
        self._strategies: list[tuple[str, Strategy]] = [
            ("primary", self._primary),
            ("lenient_markers", self._lenient_markers),
            ("cross_format", self._cross_format),
            ("plain_text", self._plain_text),
        ]

    @property
    def strategies(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self._strategies)

    def extract_content(self, raw_text: str, target_format: OutputFormat) -> Document:
        attempts: list[tuple[str, str]] = []
        for name, outcome in self._run(raw_text, target_format):
            if isinstance(outcome, Document):
                if attempts:
                    logger.warning(
                        "폴백 전략으로 추출 성공: %s (앞선 실패 %d건)", name, len(attempts),
                    )
                else:
                    logger.info("✅ 추출 성공: strategy=%s, format=%s", name, target_format.value)
                return outcome
            attempts.append((name, outcome))

        summary = "; ".join(f"{name}: {reason}" for name, reason in attempts)
        logger.error("❌ 모든 추출 전략 실패: %s", summary)
        raise PipelineError(
            ErrorKind.CONTENT_EXTRACTION,
            f"모든 추출 전략이 실패했습니다 ({summary})",
            technical_details=f"target_format={target_format.value}, length={len(raw_text or '')}",
            recovery_action="다시 생성하거나 출력 형식을 바꿔 보세요",
            context={"attempts": attempts, "target_format": target_format.value},
        )

    def _run(self, raw_text: str, target_format: OutputFormat) -> Iterator[tuple[str, Document | str]]:
        """전략을 순서대로 실행하며 (이름, 문서 또는 실패 사유)를 내보냅니다."""
        for name, strategy in self._strategies:
            try:
                document = strategy(raw_text, target_format)
            except PipelineError as e:
                logger.info("추출 전략 실패: %s [%s] %s", name, e.kind.value, e.message)
                yield name, e.message
                continue
            yield name, document

    # ── 전략 ──

    def _primary(self, raw_text: str, target_format: OutputFormat) -> Document:
        return extractor_for(target_format).extract(raw_text)

    def _lenient_markers(self, raw_text: str, target_format: OutputFormat) -> Document:
        for pattern in _LENIENT_PATTERNS:
            match = pattern.search(raw_text or "")
            if match and match.group(1).strip():
                logger.info("느슨한 마커 일치: %s", pattern.pattern)
                return extractor_for(target_format).process(
                    match.group(1).strip(), strategy="lenient_markers",
                )
        raise PipelineError(ErrorKind.ESCAPE_MARKER, "변형된 마커도 찾지 못했습니다")

    def _cross_format(self, raw_text: str, target_format: OutputFormat) -> Document:
        text = _MARKER_REMNANT.sub("", raw_text or "").strip()
        source_format = target_format.other
        if detect_format(text) is not source_format:
            raise PipelineError(
                ErrorKind.CONTENT_FORMAT,
                f"{source_format.label} 구조 마크업이 없습니다",
            )

        if source_format is OutputFormat.CONFLUENCE:
            start = _HTML_FIRST_BLOCK.search(text)
        else:
            start = _MD_HEADING_LINE.search(text)
        body = text[start.start():] if start else text

        try:
            converted = self._converter.convert(body, source_format, target_format)
        except Exception as e:
            raise PipelineError(
                ErrorKind.CONTENT_FORMAT,
                f"{source_format.label} → {target_format.label} 변환 실패: {type(e).__name__}",
            ) from e
        logger.info("형식 교차 변환: %s → %s", source_format.label, target_format.label)
        return extractor_for(target_format).process(converted, strategy="cross_format")

    def _plain_text(self, raw_text: str, target_format: OutputFormat) -> Document:
        text = _MARKER_REMNANT.sub("", raw_text or "")
        text = _ANY_TAG.sub(" ", text)
        lines = [line.rstrip() for line in text.strip().splitlines()]
        if lines and _CHATTY_PREFIX.match(lines[0]):
            lines = lines[1:]

        plain = "\n".join(lines).strip()
        if len(plain) < _MIN_PLAIN_TEXT_LENGTH:
            raise PipelineError(
                ErrorKind.CONTENT_EXTRACTION,
                f"복구할 텍스트가 너무 짧습니다 ({len(plain)}자)",
            )

        skeleton = self._build_skeleton(plain.splitlines())
        if target_format is OutputFormat.CONFLUENCE:
            skeleton = self._converter.markdown_to_storage(skeleton)
        return extractor_for(target_format).process(skeleton, strategy="plain_text")

    @staticmethod
    def _build_skeleton(lines: list[str]) -> str:
        """제목처럼 보이는 줄과 키워드 줄을 Markdown 제목으로 바꿔 최소 문서 골격을 만듭니다."""
        out: list[str] = []
        for line in lines:
            stripped = line.strip()
            if not stripped:
                out.append("")
                continue
            if _MD_HEADING_LINE.match(stripped):
                out.append(stripped)
                continue
            if len(stripped) <= _MAX_CUE_LINE_LENGTH:
                head, _, rest = stripped.partition(":")
                lowered = head.lower()
                section = next((title for cue, title in _KEYWORD_SECTIONS if cue in lowered), None)
                if section:
                    out.append(f"## {section}")
                    if rest.strip():
                        out.append(rest.strip())
                    continue
                if stripped.endswith(":") and "." not in stripped:
                    out.append(f"## {stripped.rstrip(':').strip()}")
                    continue
            out.append(stripped)

        first = next((line for line in out if line), "")
        if not first.startswith("# "):
            out = [f"# {_DEFAULT_TITLE}", ""] + out
        return "\n".join(out).strip()
