from specwiki.domain.errors import ErrorKind, PipelineError, redact_secrets

# 대화상자로 보여줄 오류 (나머지는 일시적 알림)
_DIALOG_KINDS = {
    ErrorKind.CONTENT_EXTRACTION,
    ErrorKind.MARKDOWN_PROCESSING,
    ErrorKind.HTML_PROCESSING,
}

# 호출자가 재시도를 고려해도 되는 오류 (파이프라인 내부에서는 재시도하지 않음)
_RETRYABLE_KINDS = {
    ErrorKind.NETWORK,
    ErrorKind.CONNECTION,
    ErrorKind.RATE_LIMIT,
    ErrorKind.CONTENT_PROCESSING,
    ErrorKind.PUBLISHING,
    ErrorKind.PARSING,
}

_SUGGESTIONS: dict[ErrorKind, list[str]] = {
    ErrorKind.CONNECTION: [
        "인터넷 연결을 확인하세요",
        "Base URL이 올바른지 확인하세요",
        "Confluence 서버에 접속 가능한지 확인하세요",
        "브라우저에서 직접 접속해 보세요",
    ],
    ErrorKind.AUTHENTICATION: [
        "API 토큰이 올바른지 확인하세요",
        "토큰이 만료되지 않았는지 확인하세요",
        "Confluence 설정에서 새 API 토큰을 발급하세요",
        "토큰에 필요한 권한이 있는지 확인하세요",
    ],
    ErrorKind.AUTHORIZATION: [
        "Confluence 관리자에게 접근 권한을 요청하세요",
        "해당 Space의 읽기/쓰기 권한이 있는지 확인하세요",
        "페이지별 접근 제한을 확인하세요",
    ],
    ErrorKind.CONTENT_PROCESSING: [
        "페이지가 존재하고 접근 가능한지 확인하세요",
        "페이지 URL이 올바른지 확인하세요",
        "Confluence에서 페이지를 새로고침해 보세요",
    ],
    ErrorKind.PUBLISHING: [
        "페이지 생성/수정 권한을 확인하세요",
        "상위 페이지가 존재하는지 확인하세요",
        "다른 사용자가 페이지를 편집 중인지 확인하세요",
    ],
    ErrorKind.RATE_LIMIT: [
        "잠시 기다린 후 다시 요청하세요",
        "Confluence 작업 빈도를 줄이세요",
        "관리자에게 요청 한도 상향을 문의하세요",
    ],
    ErrorKind.VALIDATION: [
        "입력값이 올바른지 확인하세요",
        "URL 형식이 올바른지 확인하세요",
        "표시된 항목을 수정하세요",
    ],
    ErrorKind.NETWORK: [
        "인터넷 연결을 확인하세요",
        "잠시 후 다시 시도하세요",
        "프록시 또는 VPN 설정을 확인하세요",
    ],
    ErrorKind.PARSING: [
        "다시 시도하세요",
        "문제가 반복되면 관리자에게 문의하세요",
        "Confluence API 버전을 확인하세요",
    ],
    ErrorKind.ESCAPE_MARKER: [
        "다시 생성해 보세요",
        "AI 모델 설정을 확인하세요",
        "모델이 형식 지시를 지원하는지 확인하세요",
    ],
    ErrorKind.MARKDOWN_PROCESSING: [
        "Markdown 대신 Confluence(HTML) 형식을 사용해 보세요",
        "요구사항을 단순하게 하여 다시 생성하세요",
        "템플릿에 HTML 태그가 포함되어 있지 않은지 확인하세요",
    ],
    ErrorKind.HTML_PROCESSING: [
        "HTML 대신 Markdown 형식을 사용해 보세요",
        "문서 구조를 명시하여 다시 생성하세요",
        "AI 모델이 HTML 생성을 지원하는지 확인하세요",
    ],
    ErrorKind.CONTENT_EXTRACTION: [
        "콘텐츠 복구 기능을 사용해 보세요",
        "출력 형식을 바꿔 보세요",
        "생성 요구사항을 단순하게 하세요",
        "AI 제공자 설정을 확인하세요",
    ],
}

_GENERIC_SUGGESTIONS = [
    "작업을 다시 시도하세요",
    "애플리케이션 설정을 확인하세요",
    "필요하면 애플리케이션을 다시 시작하세요",
]


def should_show_as_dialog(error: Exception) -> bool:
    if not isinstance(error, PipelineError):
        return False
    return error.kind in _DIALOG_KINDS or error.is_critical_marker_failure


def is_retryable(error: Exception) -> bool:
    """호출자용 참고 정보. 재시도 여부와 시점은 호출자가 결정합니다."""
    return isinstance(error, PipelineError) and error.kind in _RETRYABLE_KINDS


def recovery_suggestions(error: Exception) -> list[str]:
    if not isinstance(error, PipelineError):
        return list(_GENERIC_SUGGESTIONS)

    suggestions = list(_SUGGESTIONS.get(error.kind, []))
    if error.kind == ErrorKind.CONTENT_FORMAT:
        actual = error.context.get("actual_format")
        if actual:
            suggestions.append(f"출력 형식을 {actual}(으)로 바꿔 보세요")
        suggestions += [
            "요구사항을 구체화하여 다시 생성하세요",
            "템플릿이 선택한 형식과 호환되는지 확인하세요",
        ]
    if error.is_critical_marker_failure:
        suggestions.append("다른 AI 모델 사용을 고려해 보세요")
    if error.kind == ErrorKind.RATE_LIMIT and error.retry_after_seconds:
        suggestions.insert(0, f"{error.retry_after_seconds}초 후 다시 시도하세요")
    return suggestions or list(_GENERIC_SUGGESTIONS)


def format_for_logging(error: Exception, context: str | None = None, *secrets: str) -> str:
    """로그용 오류 요약. technical_details는 생성 시 이미 마스킹되어 있어야 합니다."""
    lines = []
    if context:
        lines.append(f"Context: {context}")

    if isinstance(error, PipelineError):
        lines.append(f"Error Type: {error.kind.value}")
        lines.append(f"Message: {error.message}")
        if error.recovery_action:
            lines.append(f"Recovery Action: {error.recovery_action}")
        if error.technical_details:
            lines.append(f"Technical Details: {error.technical_details}")
        if error.kind == ErrorKind.ESCAPE_MARKER:
            lines.append(f"Has Start Marker: {error.has_start_marker}")
            lines.append(f"Has End Marker: {error.has_end_marker}")
        if error.kind == ErrorKind.CONTENT_FORMAT:
            lines.append(f"Expected Format: {error.context.get('expected_format')}")
            lines.append(f"Actual Format: {error.context.get('actual_format')}")
        if error.retry_after_seconds is not None:
            lines.append(f"Retry After: {error.retry_after_seconds}s")
        for name, reason in error.attempts:
            lines.append(f"Attempt [{name}]: {reason}")
    else:
        lines.append(f"Error Type: {type(error).__name__}")
        lines.append(f"Message: {error}")

    # 출력 직전 한 번 더 마스킹
    return redact_secrets("\n".join(lines), *secrets)
