import logging
import re

import mistune
from markdownify import markdownify as md
from markupsafe import escape

from specwiki.domain.document import OutputFormat

logger = logging.getLogger(__name__)

_MD_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+\S", re.MULTILINE)
_HTML_HEADING = re.compile(r"<h[1-6]\b[^>]*>", re.IGNORECASE)


class _StorageRenderer(mistune.HTMLRenderer):
    """Confluence Storage Format 호환 마크다운 렌더러.

    코드 블록은 code 매크로로, 이미지는 ac:image로 변환합니다.
    """
    _MAX_HEADING = 6

    def heading(self, text: str, level: int, **attrs) -> str:
        target = min(max(level, 1), self._MAX_HEADING)
        return f"<h{target}>{text}</h{target}>\n"

    def block_code(self, code: str, info=None, **attrs) -> str:
        language = info.strip().split()[0] if info and info.strip() else "text"
        safe_code = code.replace("]]>", "]]]]><![CDATA[>")
        return (
            f'<ac:structured-macro ac:name="code">\n'
            f'  <ac:parameter ac:name="language">{escape(language)}</ac:parameter>\n'
            f'  <ac:plain-text-body><![CDATA[{safe_code}]]></ac:plain-text-body>\n'
            f'</ac:structured-macro>\n'
        )

    def image(self, text: str, url: str, title=None) -> str:
        return (
            f'<ac:image><ri:url ri:value="{escape(url)}"/>'
            f'<ac:alt>{escape(text or "")}</ac:alt></ac:image>'
        )


def detect_format(text: str) -> OutputFormat | None:
    """구조 마크업으로 형식을 추정합니다. HTML 제목 태그가 우선합니다."""
    if not text:
        return None
    if _HTML_HEADING.search(text):
        return OutputFormat.CONFLUENCE
    if _MD_HEADING.search(text):
        return OutputFormat.MARKDOWN
    return None


class FormatConverter:
    """Markdown ↔ Confluence storage HTML 변환기"""

    def __init__(self):
        self._md = mistune.create_markdown(
            renderer=_StorageRenderer(escape=True),
            plugins=["table", "strikethrough"],
        )

    def markdown_to_storage(self, text: str) -> str:
        if not text or not text.strip():
            return ""
        rendered = self._md(text.strip()).strip()
        logger.info("Markdown → storage 변환: %d자 → %d자", len(text), len(rendered))
        return rendered

    def html_to_markdown(self, content: str) -> str:
        if not content or not content.strip():
            return ""
        converted = md(content, heading_style="ATX", bullets="-").strip()
        converted = re.sub(r"\n{3,}", "\n\n", converted)
        logger.info("HTML → Markdown 변환: %d자 → %d자", len(content), len(converted))
        return converted

    def convert(self, content: str, source: OutputFormat, target: OutputFormat) -> str:
        if source is target:
            return content
        if target is OutputFormat.CONFLUENCE:
            return self.markdown_to_storage(content)
        return self.html_to_markdown(content)
