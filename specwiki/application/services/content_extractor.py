import html
import logging
import re

from bs4 import BeautifulSoup

from specwiki.application.services.input_sanitizer import (
    DENY_BLOCK_TAGS,
    parse_html,
    render_html,
    sanitize_tag_markup,
    scrub_html,
)
from specwiki.domain.document import (
    END_MARKER,
    MAX_CONTENT_SIZE,
    START_MARKER,
    Document,
    OutputFormat,
)
from specwiki.domain.errors import ErrorKind, PipelineError, escape_marker_error

logger = logging.getLogger(__name__)

_ENTITY = re.compile(r"&(#\d+|#[xX][0-9a-fA-F]+|[A-Za-z][A-Za-z0-9]*);")
_TAG = re.compile(r"</?([A-Za-z][\w:-]*)\b[^>]*?/?>")
_AUTOLINK = re.compile(r"<[A-Za-z][\w+.-]*://")
_COMMENT = re.compile(r"<!--.*?(?:-->|$)", re.DOTALL)
_CODE_SEGMENT = re.compile(r"(```.*?```|~~~.*?~~~|`[^`\n]+`)", re.DOTALL)

_MD_HEADING_LINE = re.compile(r"^\s{0,3}#{1,6}\s+\S")
_HTML_HEADING = re.compile(r"^h[1-6]$")
# 제목이 이 개수 이상인데 본문이 전혀 없으면 잘린 생성으로 간주
_SKELETON_MIN_HEADINGS = 2
_HTML_BLOCK_TAG = re.compile(r"<(h[1-6]|p|table|ul|ol)\b[^>]*>", re.IGNORECASE)
_HTML_BLOCK_LINE = re.compile(r"^\s*<(h[1-6]|p|table|thead|tbody|tr|th|td|ul|ol|li|div|blockquote)\b", re.IGNORECASE)
# 블록 태그로 시작하는 줄이 이 비율 이상이면 HTML 문서로 판단
_HTML_DOMINANCE_RATIO = 0.5
_HTML_MIN_BLOCK_TAGS = 2
_MARKDOWN_SYNTAX = (
    re.compile(r"^#{1,6}\s+", re.MULTILINE),
    re.compile(r"\*\*[^*\n]+\*\*"),
    re.compile(r"^[-*+]\s+", re.MULTILINE),
    re.compile(r"```"),
)

# Markdown 안에서 허용하는 인라인 HTML
MARKDOWN_ALLOWED_TAGS = frozenset({"code", "pre", "em", "strong", "a", "img", "br", "hr"})

# HTML(Confluence storage)에서 유지하는 태그. ac:/ri: 매크로는 별도 허용
HTML_ALLOWED_TAGS = frozenset({
    "h1", "h2", "h3", "h4", "h5", "h6", "p", "br", "hr", "blockquote",
    "ul", "ol", "li", "table", "thead", "tbody", "tfoot", "tr", "th", "td", "colgroup", "col",
    "strong", "em", "b", "i", "u", "s", "del", "sub", "sup", "code", "pre", "a", "img",
})


def locate_markers(raw_text: str, format_kind: ErrorKind) -> str:
    """START/END 마커 사이의 페이로드를 검증 후 반환합니다 (앞뒤 공백 제거).

    검증 순서: 빈 입력 → 두 마커 모두 없음 → 한쪽만 있음 → 역순 → 중복 → 빈 내용
    """
    if not raw_text or not raw_text.strip():
        raise PipelineError(
            format_kind,
            "AI 응답이 비어 있습니다",
            recovery_action="다시 생성해 보세요",
        )

    start_count = raw_text.count(START_MARKER)
    end_count = raw_text.count(END_MARKER)
    has_start = start_count > 0
    has_end = end_count > 0

    if not has_start and not has_end:
        raise escape_marker_error(
            "응답에 시작/종료 마커가 모두 없습니다",
            has_start_marker=False,
            has_end_marker=False,
            technical_details=f"length={len(raw_text)}",
        )
    if not has_start:
        raise escape_marker_error(
            f"응답에 시작 마커({START_MARKER})가 없습니다",
            has_start_marker=False,
            has_end_marker=True,
        )
    if not has_end:
        raise escape_marker_error(
            f"응답에 종료 마커({END_MARKER})가 없습니다 (응답이 잘렸을 수 있음)",
            has_start_marker=True,
            has_end_marker=False,
        )

    start_index = raw_text.find(START_MARKER)
    end_index = raw_text.find(END_MARKER)
    if start_index >= end_index:
        raise escape_marker_error(
            "종료 마커가 시작 마커보다 앞에 있습니다",
            has_start_marker=True,
            has_end_marker=True,
            technical_details=f"start_index={start_index}, end_index={end_index}",
        )
    if start_count > 1 or end_count > 1:
        raise escape_marker_error(
            "마커가 중복되어 있습니다",
            has_start_marker=True,
            has_end_marker=True,
            technical_details=f"start_count={start_count}, end_count={end_count}",
        )

    content = raw_text[start_index + len(START_MARKER):end_index].strip()
    if not content:
        raise escape_marker_error(
            "마커 사이에 내용이 없습니다",
            has_start_marker=True,
            has_end_marker=True,
        )
    return content


def decode_entities(text: str) -> str:
    """HTML 엔티티를 디코딩합니다. 마크업을 만드는 < > 는 엔티티로 남겨 둡니다."""
    def _replace(match: re.Match) -> str:
        decoded = html.unescape(match.group(0))
        if decoded in ("<", ">"):
            return match.group(0)
        return " " if decoded == "\xa0" else decoded
    return _ENTITY.sub(_replace, text)


def _map_outside_code(text: str, fn) -> str:
    """코드 블록/인라인 코드 밖의 구간에만 fn을 적용합니다."""
    parts = _CODE_SEGMENT.split(text)
    return "".join(part if i % 2 else fn(part) for i, part in enumerate(parts))


def filter_inline_html(text: str, allowed: frozenset[str]) -> str:
    """Markdown 본문의 인라인 HTML 태그를 하나씩 걸러냅니다.

    Markdown 텍스트 자체는 HTML 파서로 다시 직렬화하지 않습니다 (>, <URL> 등이 깨짐).
    태그 토큰만 골라 거부 목록 태그는 내용째 버리고, 허용 태그는 BeautifulSoup으로 속성을 정리합니다.
    """
    text = _COMMENT.sub("", text)
    out: list[str] = []
    position = 0
    skip_until: str | None = None
    for match in _TAG.finditer(text):
        token = match.group(0)
        name = match.group(1).lower()
        if skip_until is not None:
            if token.startswith("</") and name == skip_until:
                skip_until = None
                position = match.end()
            continue

        out.append(text[position:match.start()])
        position = match.end()
        if _AUTOLINK.match(token):
            out.append(token)
        elif name in DENY_BLOCK_TAGS:
            if not token.startswith("</") and not token.endswith("/>"):
                skip_until = name
        elif name in allowed:
            out.append(f"</{name}>" if token.startswith("</") else sanitize_tag_markup(token))

    if skip_until is None:
        out.append(text[position:])
    return "".join(out)


class MarkdownExtractor:
    """Markdown 형식 LLM 응답 추출기"""

    output_format = OutputFormat.MARKDOWN
    error_kind = ErrorKind.MARKDOWN_PROCESSING

    def extract(self, raw_text: str) -> Document:
        payload = locate_markers(raw_text, self.error_kind)
        return self.process(payload)

    def process(self, payload: str, strategy: str = "primary") -> Document:
        """마커 밖에서 찾은 페이로드도 같은 규칙으로 정리/검증합니다."""
        self._check_format(payload)
        content = _map_outside_code(payload, self._clean_segment).strip()
        content = re.sub(r"\n{3,}", "\n\n", content)
        self._check_body(content)
        _warn_if_large(content, self.output_format)
        return Document(content=content, format=self.output_format, strategy=strategy)

    def _clean_segment(self, segment: str) -> str:
        # 엔티티를 먼저 풀어야 인코딩으로 감춘 속성값도 걸러짐
        return filter_inline_html(decode_entities(segment), MARKDOWN_ALLOWED_TAGS)

    def _check_format(self, payload: str) -> None:
        """HTML 블록이 문서를 지배할 때만 형식 불일치로 봅니다. 본문 중간의 <p>, <table> 하나는 허용."""
        outside_code = _CODE_SEGMENT.sub("", payload)
        if any(_MD_HEADING_LINE.match(line) for line in outside_code.splitlines()):
            return
        block_tags = _HTML_BLOCK_TAG.findall(outside_code)
        lines = [line for line in outside_code.splitlines() if line.strip()]
        html_lines = [line for line in lines if _HTML_BLOCK_LINE.match(line)]
        if len(block_tags) >= _HTML_MIN_BLOCK_TAGS and lines and len(html_lines) / len(lines) >= _HTML_DOMINANCE_RATIO:
            raise PipelineError(
                ErrorKind.CONTENT_FORMAT,
                "Markdown 형식 요청에 HTML 문서가 반환되었습니다",
                technical_details=f"block_tags={len(block_tags)}, html_lines={len(html_lines)}/{len(lines)}",
                recovery_action="출력 형식을 HTML로 바꾸거나 다시 생성하세요",
                context={"expected_format": "Markdown", "actual_format": "HTML"},
            )

    def _check_body(self, content: str) -> None:
        if not content:
            raise PipelineError(self.error_kind, "정리 후 남은 Markdown 내용이 없습니다")
        lines = [line for line in content.splitlines() if line.strip()]
        headings = [line for line in lines if _MD_HEADING_LINE.match(line)]
        if len(headings) >= _SKELETON_MIN_HEADINGS and len(headings) == len(lines):
            raise PipelineError(
                self.error_kind,
                "문서에 제목만 있고 본문이 없습니다 (생성이 중간에 끊겼을 수 있음)",
                recovery_action="다시 생성해 보세요",
            )


class HtmlExtractor:
    """Confluence storage HTML 형식 LLM 응답 추출기"""

    output_format = OutputFormat.CONFLUENCE
    error_kind = ErrorKind.HTML_PROCESSING

    def extract(self, raw_text: str) -> Document:
        payload = locate_markers(raw_text, self.error_kind)
        return self.process(payload)

    def process(self, payload: str, strategy: str = "primary") -> Document:
        self._check_format(payload)
        # 파서가 엔티티를 한 번 디코딩하고, 직렬화할 때 & < > 만 다시 인코딩함
        soup = scrub_html(parse_html(payload), HTML_ALLOWED_TAGS, allow_macros=True)
        self._check_body(soup)
        content = render_html(soup).strip()
        content = re.sub(r"\n{3,}", "\n\n", content)
        _warn_if_large(content, self.output_format)
        return Document(content=content, format=self.output_format, strategy=strategy)

    def _check_format(self, payload: str) -> None:
        without_code = re.sub(r"<pre\b.*?</pre\s*>|<ac:plain-text-body>.*?</ac:plain-text-body>",
                              "", payload, flags=re.IGNORECASE | re.DOTALL)
        for pattern in _MARKDOWN_SYNTAX:
            if pattern.search(without_code):
                raise PipelineError(
                    ErrorKind.CONTENT_FORMAT,
                    "HTML 형식 요청에 Markdown 문법이 반환되었습니다",
                    technical_details=f"pattern={pattern.pattern}",
                    recovery_action="출력 형식을 Markdown으로 바꾸거나 다시 생성하세요",
                    context={"expected_format": "HTML", "actual_format": "Markdown"},
                )

    def _check_body(self, soup: BeautifulSoup) -> None:
        if not soup.get_text(strip=True):
            raise PipelineError(self.error_kind, "정리 후 남은 HTML 내용이 없습니다")
        headings = soup.find_all(_HTML_HEADING)
        body = "".join(
            text for text in soup.find_all(string=True)
            if text.find_parent(_HTML_HEADING) is None
        )
        if len(headings) >= _SKELETON_MIN_HEADINGS and not body.strip():
            raise PipelineError(
                self.error_kind,
                "문서에 제목만 있고 본문이 없습니다 (생성이 중간에 끊겼을 수 있음)",
                recovery_action="다시 생성해 보세요",
            )


def extractor_for(output_format: OutputFormat) -> MarkdownExtractor | HtmlExtractor:
    if output_format is OutputFormat.MARKDOWN:
        return MarkdownExtractor()
    return HtmlExtractor()


def _warn_if_large(content: str, output_format: OutputFormat) -> None:
    if len(content) > MAX_CONTENT_SIZE:
        logger.warning(
            "추출된 %s 문서가 큽니다: %d자 (기준 %d자)",
            output_format.label, len(content), MAX_CONTENT_SIZE,
        )
