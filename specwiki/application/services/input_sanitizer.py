"""신뢰 경계를 넘기 전 입력값 정규화/검증.

검증 실패는 네트워크 호출 전에 validation 오류로 즉시 실패합니다.
정리(sanitize) 함수는 값을 고쳐서 돌려주고, 검증(validate) 함수는 거부합니다.
"""
import logging
import re
from urllib.parse import urlsplit, urlunsplit

from bs4 import BeautifulSoup, Comment, Declaration, Doctype, ProcessingInstruction, Tag

from specwiki.domain.errors import validation_error
from specwiki.domain.wiki import CLOUD_HOST_SUFFIX

logger = logging.getLogger(__name__)

# 줄바꿈/탭은 본문에서 허용
_TEXT_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F-\x9F\u200B-\u200F\u2028-\u202E]")
_ANY_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F-\x9F\u2028\u2029]")
_SCRIPT_LIKE = re.compile(r"<\s*script|javascript\s*:|vbscript\s*:|data\s*:\s*text/html|\bon\w+\s*=", re.IGNORECASE)
_PATH_TRAVERSAL = re.compile(r"\.\.[\\/]|^\.\.$")

# 내용째 제거하는 태그 / 태그만 제거하는 단독 태그
DENY_BLOCK_TAGS = frozenset({"script", "style", "iframe", "object", "form", "head", "title", "noscript", "template"})
DENY_VOID_TAGS = frozenset({"embed", "link", "meta", "base"})
_UNSAFE_URL_SCHEMES = ("javascript:", "vbscript:", "data:text/html")
_URL_WHITESPACE = re.compile(r"[\s\x00-\x1F]+")
_MARKUP_NODES = (Comment, Declaration, Doctype, ProcessingInstruction)

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TOKEN = re.compile(r"^[A-Za-z0-9+/=_-]+$")
_PAGE_ID = re.compile(r"^\d{1,20}$")
_SPACE_KEY = re.compile(r"^~?[A-Za-z0-9_-]{1,255}$")

TOKEN_MIN_LENGTH = 10
TOKEN_MAX_LENGTH = 500
MAX_TITLE_LENGTH = 255


def has_control_chars(value: str) -> bool:
    return bool(_ANY_CONTROL_CHARS.search(value))


def looks_like_script(value: str) -> bool:
    return bool(_SCRIPT_LIKE.search(value))


def sanitize_base_url(url: str) -> str:
    """Confluence 기본 URL을 정규화합니다. Cloud 호스트는 https로 강제합니다."""
    candidate = (url or "").strip()
    if not candidate:
        raise validation_error("Base URL이 비어 있습니다", field="baseUrl",
                               recovery_action="예: https://your-domain.atlassian.net")
    if has_control_chars(candidate) or looks_like_script(candidate):
        raise validation_error("Base URL에 허용되지 않는 문자가 포함되어 있습니다", field="baseUrl")

    parts = urlsplit(candidate)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise validation_error(
            "Base URL 형식이 올바르지 않습니다",
            field="baseUrl",
            recovery_action="http(s)://호스트 형식으로 입력하세요 (예: https://your-domain.atlassian.net)",
        )

    scheme = parts.scheme
    if scheme == "http" and parts.hostname.lower().endswith(CLOUD_HOST_SUFFIX):
        logger.info("Cloud 호스트는 https로 전환: %s", parts.hostname)
        scheme = "https"
    # 쿼리/프래그먼트는 버림
    return urlunsplit((scheme, parts.netloc, parts.path.rstrip("/"), "", ""))


def sanitize_email(email: str) -> str:
    candidate = (email or "").strip().lower()
    if not candidate or not _EMAIL.match(candidate) or has_control_chars(candidate):
        raise validation_error("이메일 형식이 올바르지 않습니다", field="email")
    return candidate


def validate_token(token: str) -> str:
    """API 토큰 형식을 검증합니다. 오류 메시지에는 토큰을 포함하지 않습니다."""
    candidate = (token or "").strip()
    if not candidate:
        raise validation_error("API 토큰이 비어 있습니다", field="token",
                               recovery_action="Confluence에서 발급한 API 토큰을 입력하세요")
    if not TOKEN_MIN_LENGTH <= len(candidate) <= TOKEN_MAX_LENGTH:
        raise validation_error(
            f"API 토큰 길이가 올바르지 않습니다 ({TOKEN_MIN_LENGTH}~{TOKEN_MAX_LENGTH}자)",
            field="token",
            technical_details=f"length={len(candidate)}",
        )
    if not _TOKEN.match(candidate):
        raise validation_error("API 토큰에 허용되지 않는 문자가 포함되어 있습니다", field="token")
    return candidate


def validate_page_id(page_id: str) -> str:
    candidate = (page_id or "").strip()
    if not _PAGE_ID.match(candidate):
        raise validation_error(
            "페이지 ID는 숫자여야 합니다",
            field="pageId",
            technical_details=f"page_id={_preview(candidate)}",
        )
    return candidate


def validate_space_key(space_key: str) -> str:
    candidate = (space_key or "").strip()
    if not _SPACE_KEY.match(candidate):
        raise validation_error("Space 키 형식이 올바르지 않습니다", field="spaceKey")
    return candidate


def validate_path_component(value: str, field: str = "path") -> str:
    """URL 경로 조각 검증: 제어 문자, 스크립트, 경로 이동, 구분자를 거부합니다."""
    if value is None or not str(value).strip():
        raise validation_error(f"{field} 값이 비어 있습니다", field=field)
    value = str(value).strip()
    if has_control_chars(value) or looks_like_script(value):
        raise validation_error(f"{field} 값에 허용되지 않는 문자가 포함되어 있습니다", field=field)
    if _PATH_TRAVERSAL.search(value) or any(ch in value for ch in "/\\?#"):
        raise validation_error(f"{field} 값에 경로 구분자를 사용할 수 없습니다", field=field)
    return value


def validate_query_value(value: str, field: str = "query") -> str:
    value = str(value)
    if has_control_chars(value) or looks_like_script(value):
        raise validation_error(f"{field} 값에 허용되지 않는 문자가 포함되어 있습니다", field=field)
    return value


def validate_title(title: str) -> str:
    candidate = " ".join((title or "").split())
    if not candidate:
        raise validation_error("페이지 제목이 비어 있습니다", field="title",
                               recovery_action="새 페이지 제목을 입력하세요")
    if len(candidate) > MAX_TITLE_LENGTH or looks_like_script(candidate):
        raise validation_error("페이지 제목이 올바르지 않습니다", field="title")
    return candidate


def sanitize_page_url(url: str) -> str:
    candidate = (url or "").strip()
    if not candidate or has_control_chars(candidate) or looks_like_script(candidate):
        raise validation_error("페이지 URL이 올바르지 않습니다", field="pageUrl")
    parts = urlsplit(candidate)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise validation_error("페이지 URL은 http(s) 주소여야 합니다", field="pageUrl")
    return candidate


def sanitize_text(content: str, allow_html: bool = False) -> str:
    """자유 텍스트 정리: 제어 문자/스크립트 제거, allow_html=False면 태그 제거."""
    if not content:
        return ""
    cleaned = _TEXT_CONTROL_CHARS.sub("", content)
    if allow_html:
        return sanitize_html(cleaned)
    soup = scrub_html(parse_html(cleaned))
    return soup.get_text(separator=" ")


# ── HTML 정리 (BeautifulSoup 파싱 트리 기준) ──

def parse_html(content: str) -> BeautifulSoup:
    return BeautifulSoup(content or "", "html.parser")


def is_unsafe_url(value: str) -> bool:
    """엔티티가 디코딩된 속성값이 스크립트 URL인지 확인합니다. 공백/제어 문자를 끼워 넣은 변형도 잡습니다."""
    compact = _URL_WHITESPACE.sub("", value or "").lower()
    return compact.startswith(_UNSAFE_URL_SCHEMES)


def clean_attributes(tag: Tag) -> None:
    """on* 이벤트 핸들러와 스크립트 URL을 담은 속성을 제거합니다."""
    for name in list(tag.attrs):
        value = tag.attrs[name]
        text = " ".join(value) if isinstance(value, list) else str(value)
        if name.lower().startswith("on") or is_unsafe_url(text):
            logger.info("위험한 속성 제거: <%s %s>", tag.name, name)
            del tag.attrs[name]


def scrub_html(
    soup: BeautifulSoup,
    allowed_tags: frozenset[str] | None = None,
    allow_macros: bool = False,
) -> BeautifulSoup:
    """파싱 트리에서 위험한 노드를 제거합니다.

    - 주석, DOCTYPE, 처리 지시문 제거
    - 거부 목록 태그는 내용째 제거
    - allowed_tags가 주어지면 목록 밖 태그는 벗겨내고 텍스트만 남김 (allow_macros면 ac:/ri: 유지)
    - 남은 태그의 속성 정리
    """
    for node in soup.find_all(string=lambda s: isinstance(s, _MARKUP_NODES)):
        node.extract()
    for tag in soup.find_all(list(DENY_BLOCK_TAGS | DENY_VOID_TAGS)):
        if not tag.decomposed:
            tag.decompose()

    for tag in soup.find_all(True):
        name = tag.name.lower()
        is_macro = allow_macros and name.startswith(("ac:", "ri:"))
        if allowed_tags is not None and name not in allowed_tags and not is_macro:
            tag.unwrap()
            continue
        clean_attributes(tag)
    return soup


def render_html(soup: BeautifulSoup) -> str:
    """정리된 트리를 직렬화합니다. 텍스트의 & < > 는 엔티티로 다시 인코딩됩니다."""
    return soup.decode(formatter="minimal").replace("\xa0", " ")


def sanitize_tag_markup(markup: str) -> str:
    """단일 시작 태그 문자열을 파싱해 속성을 정리한 뒤 시작 태그만 다시 만듭니다."""
    tag = parse_html(markup).find(True)
    if tag is None:
        return ""
    clean_attributes(tag)
    tag.clear()
    rendered = tag.decode(formatter="minimal")
    closing = f"</{tag.name}>"
    return rendered[: -len(closing)] if rendered.endswith(closing) else rendered


def sanitize_html(content: str) -> str:
    """허용되지 않는 HTML(스크립트, iframe, 이벤트 핸들러 등)을 제거합니다. 나머지 마크업은 유지."""
    if not content:
        return ""
    return render_html(scrub_html(parse_html(content)))


def sanitize_wiki_html(content: str) -> str:
    """Confluence storage HTML을 LLM 입력용 평문으로 변환합니다."""
    if not content:
        return ""
    soup = scrub_html(parse_html(content))
    text = soup.get_text(separator=" ", strip=True)
    text = _TEXT_CONTROL_CHARS.sub("", text)
    return " ".join(text.split())


def _preview(value: str, limit: int = 20) -> str:
    value = _ANY_CONTROL_CHARS.sub("?", value)
    return value if len(value) <= limit else f"{value[:limit]}..."
