from dataclasses import dataclass
from enum import Enum

# LLM 응답 페이로드 구분자
START_MARKER = "@@@START@@@"
END_MARKER = "@@@END@@@"

# 이 길이를 넘는 문서는 경고 로그만 남김
MAX_CONTENT_SIZE = 50_000


class OutputFormat(Enum):
    MARKDOWN = "markdown"
    CONFLUENCE = "confluence"   # Confluence storage format HTML

    @property
    def other(self) -> "OutputFormat":
        return OutputFormat.CONFLUENCE if self is OutputFormat.MARKDOWN else OutputFormat.MARKDOWN

    @property
    def label(self) -> str:
        return "Markdown" if self is OutputFormat.MARKDOWN else "HTML"


@dataclass(frozen=True)
class Document:
    """검증을 통과한 명세 문서"""
    content: str
    format: OutputFormat
    strategy: str = "primary"   # 문서를 만든 추출 전략 이름
