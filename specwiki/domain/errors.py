import re
from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """파이프라인 오류 분류"""
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    CONTENT_PROCESSING = "contentProcessing"
    PUBLISHING = "publishing"
    RATE_LIMIT = "rateLimit"
    VALIDATION = "validation"
    NETWORK = "network"
    PARSING = "parsing"
    # 콘텐츠 추출 전용
    MARKDOWN_PROCESSING = "markdownProcessing"
    HTML_PROCESSING = "htmlProcessing"
    ESCAPE_MARKER = "escapeMarker"
    CONTENT_FORMAT = "contentFormat"
    CONTENT_EXTRACTION = "contentExtraction"

    @property
    def is_content_kind(self) -> bool:
        return self in _CONTENT_KINDS


_CONTENT_KINDS = {
    ErrorKind.MARKDOWN_PROCESSING,
    ErrorKind.HTML_PROCESSING,
    ErrorKind.ESCAPE_MARKER,
    ErrorKind.CONTENT_FORMAT,
    ErrorKind.CONTENT_EXTRACTION,
}


class PipelineError(Exception):
    """kind 태그와 context를 가진 단일 파이프라인 예외.

    message / technical_details에는 원본 토큰이 절대 포함되지 않아야 합니다.
    생성하는 쪽에서 redact_secrets()로 미리 마스킹합니다.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        technical_details: str | None = None,
        recovery_action: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.technical_details = technical_details
        self.recovery_action = recovery_action
        self.context: dict[str, Any] = dict(context or {})

    @property
    def retry_after_seconds(self) -> int | None:
        return self.context.get("retry_after_seconds")

    @property
    def status_code(self) -> int | None:
        return self.context.get("status_code")

    @property
    def has_start_marker(self) -> bool:
        return bool(self.context.get("has_start_marker", False))

    @property
    def has_end_marker(self) -> bool:
        return bool(self.context.get("has_end_marker", False))

    @property
    def is_critical_marker_failure(self) -> bool:
        """두 마커가 모두 없는 경우 (모델이 형식 지시를 무시함)"""
        return (
            self.kind == ErrorKind.ESCAPE_MARKER
            and not self.has_start_marker
            and not self.has_end_marker
        )

    @property
    def attempts(self) -> list[tuple[str, str]]:
        return list(self.context.get("attempts", []))

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"

    def __repr__(self) -> str:
        return f"PipelineError(kind={self.kind.value!r}, message={self.message!r})"


# ── 생성 헬퍼 ──

def validation_error(
    message: str,
    *,
    field: str | None = None,
    recovery_action: str | None = None,
    technical_details: str | None = None,
) -> PipelineError:
    context = {"field": field} if field else {}
    return PipelineError(
        ErrorKind.VALIDATION,
        message,
        technical_details=technical_details,
        recovery_action=recovery_action or "입력값을 확인하고 다시 시도하세요",
        context=context,
    )


def escape_marker_error(
    message: str,
    *,
    has_start_marker: bool,
    has_end_marker: bool,
    technical_details: str | None = None,
) -> PipelineError:
    if not has_start_marker and not has_end_marker:
        recovery = "AI 모델이 형식 지시를 따르지 않았습니다. 다시 생성하거나 다른 모델을 사용하세요"
    else:
        recovery = "응답이 잘렸거나 손상되었습니다. 다시 생성해 보세요"
    return PipelineError(
        ErrorKind.ESCAPE_MARKER,
        message,
        technical_details=technical_details,
        recovery_action=recovery,
        context={
            "has_start_marker": has_start_marker,
            "has_end_marker": has_end_marker,
        },
    )


def rate_limit_error(retry_after_seconds: int, *, technical_details: str | None = None) -> PipelineError:
    return PipelineError(
        ErrorKind.RATE_LIMIT,
        f"요청 한도를 초과했습니다. {retry_after_seconds}초 후 다시 시도하세요",
        technical_details=technical_details,
        recovery_action=f"{retry_after_seconds}초 대기 후 다시 시도하세요",
        context={"retry_after_seconds": retry_after_seconds, "status_code": 429},
    )


# ── 비밀값 마스킹 ──

_SENSITIVE_HEADER_PARTS = ("authorization", "token", "key")


def redact_token(token: str | None) -> str:
    """토큰을 앞 4자 + *** + 뒤 4자로 마스킹합니다. 8자 이하는 *** 로 대체."""
    if not token:
        return ""
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}***{token[-4:]}"


def redact_secrets(text: str | None, *secrets: str | None) -> str:
    """텍스트에서 주어진 비밀값들을 마스킹된 형태로 치환합니다."""
    if not text:
        return text or ""
    redacted = text
    # 긴 값부터 치환해야 부분 문자열이 먼저 바뀌지 않음
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        redacted = redacted.replace(secret, redact_token(secret))
    # Basic/Bearer 인증 헤더 값이 섞여 들어온 경우
    redacted = re.sub(
        r"(?i)\b(basic|bearer)\s+[A-Za-z0-9+/=._-]{8,}",
        lambda m: f"{m.group(1)} ***",
        redacted,
    )
    return redacted


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    """로그용: 민감한 헤더 값을 마스킹합니다."""
    masked = {}
    for name, value in headers.items():
        lowered = name.lower()
        if any(part in lowered for part in _SENSITIVE_HEADER_PARTS):
            masked[name] = redact_token(value)
        else:
            masked[name] = value
    return masked
