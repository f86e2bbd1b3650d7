import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlsplit

# 링크 캐시 유효 시간 (분)
LINK_CACHE_TTL_MINUTES = 30

CLOUD_HOST_SUFFIX = ".atlassian.net"
CONTENT_MARKER_PREFIX = "@conf-cnt"
MARKER_AT_REPLACEMENT = "＠"

_REST_API_SUFFIX = "/wiki/rest/api"
_PAGE_ID_IN_PATH = re.compile(r"/pages/(\d+)(?=[/?#]|$)")


def extract_page_id_from_url(url: str) -> str | None:
    """URL에서 페이지 ID를 추출합니다.

    1순위: /pages/{숫자} 경로 세그먼트
    2순위: 숫자로 된 pageId 쿼리 파라미터 (viewpage.action 레거시 링크)
    """
    if not url:
        return None
    match = _PAGE_ID_IN_PATH.search(url)
    if match:
        return match.group(1)
    try:
        query = urlsplit(url).query
    except ValueError:
        return None
    values = parse_qs(query).get("pageId", [])
    if values and values[0].isdigit():
        return values[0]
    return None


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class WikiConnectionConfig:
    """Confluence 연결 설정. token_ref는 보안 저장소의 참조값이며 실제 토큰이 아닙니다."""
    enabled: bool = False
    base_url: str = ""
    token_ref: str = ""
    email: str = ""
    last_validated: datetime | None = None
    is_valid: bool = False

    @property
    def is_configuration_complete(self) -> bool:
        return bool(self.enabled and self.base_url and self.token_ref and self.email)

    @property
    def sanitized_base_url(self) -> str:
        """끝의 '/'와 '/wiki/rest/api' 접미사를 제거한 기본 URL"""
        url = self.base_url.strip().rstrip("/")
        while url.endswith(_REST_API_SUFFIX):
            url = url[: -len(_REST_API_SUFFIX)].rstrip("/")
        return url

    @property
    def host(self) -> str:
        return (urlsplit(self.sanitized_base_url).hostname or "").lower()

    @property
    def is_cloud(self) -> bool:
        return self.host.endswith(CLOUD_HOST_SUFFIX)

    @property
    def api_base_url(self) -> str:
        """REST API 기본 URL.

        Cloud: {base}/wiki/rest/api (경로에 wiki 세그먼트가 이미 있으면 {base}/rest/api)
        Server/Data Center: {base}/rest/api (context path 유지)
        """
        base = self.sanitized_base_url
        if self.is_cloud:
            segments = [s for s in urlsplit(base).path.split("/") if s]
            if "wiki" in segments:
                return f"{base}/rest/api"
            return f"{base}/wiki/rest/api"
        return f"{base}/rest/api"

    def with_token_ref(self, token_ref: str) -> "WikiConnectionConfig":
        """토큰 교체. 재검증 전까지 is_valid는 False가 됩니다."""
        return replace(self, token_ref=token_ref, is_valid=False, last_validated=None)

    def mark_validated(self, is_valid: bool) -> "WikiConnectionConfig":
        return replace(self, is_valid=is_valid, last_validated=datetime.now())

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "baseUrl": self.base_url,
            "tokenRef": self.token_ref,
            "email": self.email,
            "lastValidated": self.last_validated.isoformat() if self.last_validated else None,
            "isValid": self.is_valid,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WikiConnectionConfig":
        return cls(
            enabled=bool(data.get("enabled", False)),
            base_url=str(data.get("baseUrl", "")),
            token_ref=str(data.get("tokenRef", "")),
            email=str(data.get("email", "")),
            last_validated=_parse_datetime(data.get("lastValidated")),
            is_valid=bool(data.get("isValid", False)),
        )


@dataclass(frozen=True)
class PageAncestor:
    id: str
    title: str = ""


@dataclass(frozen=True)
class WikiPage:
    """Confluence 페이지 스냅샷 (조회 시점 기준, 불변)"""
    id: str
    title: str
    url: str
    version: int
    space_key: str
    content: str | None = None   # storage format HTML
    ancestors: tuple[PageAncestor, ...] = ()


@dataclass(frozen=True)
class WikiLink:
    """사용자 텍스트에 포함된 Wiki 링크의 해석 결과"""
    original_url: str
    page_id: str = ""
    extracted_content: str = ""
    processed_at: datetime = field(default_factory=datetime.now)
    is_valid: bool = True
    error_message: str | None = None

    @classmethod
    def success(cls, original_url: str, page_id: str, content: str) -> "WikiLink":
        return cls(original_url=original_url, page_id=page_id, extracted_content=content)

    @classmethod
    def failed(cls, original_url: str, error_message: str, page_id: str = "") -> "WikiLink":
        return cls(
            original_url=original_url,
            page_id=page_id,
            extracted_content="",
            is_valid=False,
            error_message=error_message or "알 수 없는 오류",
        )

    @property
    def content_marker(self) -> str:
        """LLM 프롬프트에 삽입되는 한 줄 마커. 실패/빈 콘텐츠면 원본 URL 유지.

        마커는 '@'로 끝나므로 본문 안의 '@'는 전각 '＠'로 바꿔 둡니다 (이메일, 멘션 등).
        """
        if not self.is_valid or not self.extracted_content.strip():
            return self.original_url
        single_line = " ".join(self.extracted_content.split()).replace("@", MARKER_AT_REPLACEMENT)
        return f"{CONTENT_MARKER_PREFIX} {single_line}@"

    def is_fresh(self, ttl: timedelta = timedelta(minutes=LINK_CACHE_TTL_MINUTES), now: datetime | None = None) -> bool:
        now = now or datetime.now()
        return now - self.processed_at < ttl

    def to_dict(self) -> dict:
        return {
            "originalUrl": self.original_url,
            "pageId": self.page_id,
            "extractedContent": self.extracted_content,
            "processedAt": self.processed_at.isoformat(),
            "isValid": self.is_valid,
            "errorMessage": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WikiLink":
        return cls(
            original_url=data["originalUrl"],
            page_id=data.get("pageId", ""),
            extracted_content=data.get("extractedContent", ""),
            processed_at=datetime.fromisoformat(data["processedAt"]),
            is_valid=data.get("isValid", True),
            error_message=data.get("errorMessage"),
        )
