import logging
from collections.abc import Callable
from urllib.parse import quote, urlsplit

import httpx

from specwiki.application.services import input_sanitizer
from specwiki.application.services.secure_credential_store import SecureCredentialStore
from specwiki.domain.errors import (
    ErrorKind,
    PipelineError,
    rate_limit_error,
    redact_headers,
    redact_secrets,
    validation_error,
)
from specwiki.domain.wiki import PageAncestor, WikiConnectionConfig, WikiPage

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRY_AFTER_SECONDS = 60
_ERROR_TEXT_LIMIT = 200
_PAGE_EXPAND = "body.storage,version,ancestors,space"


def parse_retry_after(value: str | None) -> int:
    """Retry-After 헤더(초)를 해석합니다. 없거나 해석 불가면 60초."""
    if value is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    value = value.strip()
    if value.isdigit():
        return int(value)
    return DEFAULT_RETRY_AFTER_SECONDS


def extract_error_message(response: httpx.Response) -> str:
    """응답 본문에서 오류 메시지를 뽑습니다. JSON message/error/errorMessage → 짧은 본문 → HTTP 코드"""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("message", "error", "errorMessage"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
        return f"HTTP {response.status_code}"
    text = response.text or ""
    if text and len(text) <= _ERROR_TEXT_LIMIT:
        return text
    return f"HTTP {response.status_code}"


class WikiAdapter:
    """Confluence REST API와 통신하는 Outbound Adapter.

    - 요청 전: 경로/쿼리 값 검증, 보안 저장소에서 토큰 조회 (실패 시 validation)
    - 429: Retry-After를 담은 rateLimit 오류 (자동 재시도 없음)
    - 4xx/5xx: 상태 코드별 오류 종류로 변환, 메시지에서 토큰 마스킹
    """

    def __init__(
        self,
        config_source: Callable[[], WikiConnectionConfig],
        credentials: SecureCredentialStore,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config_source = config_source
        self._credentials = credentials
        self._timeout = timeout
        self._transport = transport

    # ── 페이지 API ──

    async def get_page(self, page_id: str) -> WikiPage:
        """페이지의 본문, 버전, 상위 페이지 정보를 포함하여 조회합니다."""
        page_id = input_sanitizer.validate_page_id(page_id)
        logger.info("🌐 Confluence 페이지 조회: page_id=%s", page_id)

        data = await self.request(
            "GET",
            f"/content/{page_id}",
            params={"expand": _PAGE_EXPAND},
        )
        page = self._parse_page(data)
        logger.info(
            "페이지 조회 완료: id=%s, version=%d, body_len=%d",
            page.id, page.version, len(page.content or ""),
        )
        return page

    async def create_page(
        self,
        space_key: str,
        parent_id: str,
        title: str,
        body: str,
    ) -> WikiPage:
        """새 Confluence 페이지를 생성합니다."""
        space_key = input_sanitizer.validate_space_key(space_key)
        parent_id = input_sanitizer.validate_page_id(parent_id)
        title = input_sanitizer.validate_title(title)
        payload = {
            "type": "page",
            "title": title,
            "space": {"key": space_key},
            "ancestors": [{"id": parent_id}],
            "body": {
                "storage": {
                    "value": body,
                    "representation": "storage",
                }
            },
        }

        logger.info("🌐 Confluence 페이지 생성: title=%s, parent=%s", title, parent_id)

        data = await self.request(
            "POST",
            "/content",
            json=payload,
            operation="create",
            custom_errors={409: f"동일한 제목의 페이지가 이미 존재합니다: '{title}'"},
        )
        page = self._parse_page(data, default_space_key=space_key)
        logger.info("✅ 페이지 생성 완료: id=%s, title=%s", page.id, page.title)
        return page

    async def update_page(
        self,
        page_id: str,
        title: str,
        body: str,
        current_version: int,
        space_key: str,
    ) -> WikiPage:
        """기존 페이지를 업데이트합니다. 전송하는 버전은 current_version + 1입니다."""
        page_id = input_sanitizer.validate_page_id(page_id)
        title = input_sanitizer.validate_title(title)
        space_key = input_sanitizer.validate_space_key(space_key)
        next_version = current_version + 1
        payload = {
            "id": page_id,
            "type": "page",
            "title": title,
            "space": {"key": space_key},
            "body": {
                "storage": {
                    "value": body,
                    "representation": "storage",
                }
            },
            "version": {"number": next_version},
        }

        logger.info(
            "🌐 Confluence 페이지 업데이트: page_id=%s, title=%s, version=%d",
            page_id, title, next_version,
        )

        data = await self.request(
            "PUT",
            f"/content/{page_id}",
            json=payload,
            operation="update",
            custom_errors={
                404: f"수정할 페이지를 찾을 수 없습니다 (page_id={page_id})",
                409: f"페이지 버전 충돌: 다른 사용자가 먼저 수정했습니다 (page_id={page_id})",
            },
        )
        page = self._parse_page(data, default_space_key=space_key)
        logger.info("✅ 페이지 업데이트 완료: id=%s, version=%d", page.id, page.version)
        return page

    async def find_page_by_title(self, space_key: str, title: str) -> WikiPage | None:
        """Space 내에서 정확한 제목으로 페이지를 검색합니다."""
        space_key = input_sanitizer.validate_space_key(space_key)
        title = input_sanitizer.validate_title(title)
        logger.info("🌐 Confluence 페이지 검색: title=%s, space=%s", title, space_key)

        data = await self.request(
            "GET",
            "/content",
            params={
                "title": title,
                "spaceKey": space_key,
                "type": "page",
                "limit": "1",
                "expand": _PAGE_EXPAND,
            },
        )
        results = data.get("results")
        if not isinstance(results, list):
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence 검색 응답 형식이 올바르지 않습니다",
                technical_details="missing results[]",
            )
        if not results:
            logger.info("페이지 없음: title=%s (space=%s)", title, space_key)
            return None
        if not isinstance(results[0], dict):
            raise PipelineError(ErrorKind.PARSING, "Confluence 검색 결과 항목 형식이 올바르지 않습니다")

        page = self._parse_page(results[0], default_space_key=space_key)
        logger.info("페이지 발견: [%s] %s", page.id, page.title)
        return page

    async def test_connection(self) -> bool:
        """Space 목록 1건 조회로 연결/인증을 확인합니다. 실패하면 분류된 오류를 발생시킵니다."""
        logger.info("🌐 Confluence 연결 테스트")
        data = await self.request("GET", "/space", params={"limit": "1"})
        if not isinstance(data.get("results"), list):
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence Space 응답 형식이 올바르지 않습니다",
                technical_details="missing results[]",
            )
        logger.info("✅ Confluence 연결 성공")
        return True

    async def resolve_short_link(self, url: str) -> str:
        """/x/ 단축 링크의 리다이렉트를 따라가 최종 URL을 반환합니다."""
        url = input_sanitizer.sanitize_page_url(url)
        config, token = self._prepare()
        if (urlsplit(url).hostname or "").lower() != config.host:
            raise validation_error("단축 링크가 설정된 Confluence 호스트와 다릅니다", field="url")

        logger.info("🌐 단축 링크 확인: %s", url)
        response = await self._send("GET", url, config, token, follow_redirects=True)
        final_url = str(response.url)
        logger.info("단축 링크 해석 완료: %s → %s", url, final_url)
        return final_url

    # ── 공통 요청 ──

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: dict | None = None,
        operation: str = "read",
        custom_errors: dict[int, str] | None = None,
    ) -> dict:
        """REST API 호출 후 JSON 객체를 반환합니다. path는 api base 기준 상대 경로입니다."""
        safe_path = self._sanitize_path(path)
        safe_params = {
            key: input_sanitizer.validate_query_value(value, field=key)
            for key, value in (params or {}).items()
        }
        config, token = self._prepare()
        url = f"{config.api_base_url}{safe_path}"

        response = await self._send(
            method,
            url,
            config,
            token,
            operation=operation,
            custom_errors=custom_errors,
            params=safe_params or None,
            json=json,
        )
        try:
            data = response.json()
        except ValueError as e:
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence 응답을 JSON으로 해석할 수 없습니다",
                technical_details=f"status={response.status_code}, length={len(response.content)}",
            ) from e
        if not isinstance(data, dict):
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence 응답 형식이 올바르지 않습니다",
                technical_details=f"type={type(data).__name__}",
            )
        return data

    async def _send(
        self,
        method: str,
        url: str,
        config: WikiConnectionConfig,
        token: str,
        *,
        operation: str = "read",
        custom_errors: dict[int, str] | None = None,
        follow_redirects: bool = False,
        **kwargs,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.request(
                    method,
                    url,
                    auth=(config.email, token),
                    headers={"Accept": "application/json"},
                    follow_redirects=follow_redirects,
                    **kwargs,
                )
                logger.info("HTTP Status: %d", response.status_code)
                logger.debug("요청 헤더: %s", redact_headers(dict(response.request.headers)))
                response.raise_for_status()
                return response

        except httpx.HTTPStatusError as e:
            self._raise_http_error(e, operation, token, custom_errors)
        except httpx.TimeoutException as e:
            logger.error("❌ 요청 시간 초과: %s", type(e).__name__)
            raise PipelineError(
                ErrorKind.NETWORK,
                "Confluence 응답 시간이 초과되었습니다",
                technical_details=f"timeout={self._timeout}s",
                recovery_action="잠시 후 다시 시도하세요",
            ) from e
        except httpx.TransportError as e:
            logger.error("❌ 네트워크 오류: %s", type(e).__name__)
            raise PipelineError(
                ErrorKind.CONNECTION,
                f"Confluence 서버 연결 실패: {config.sanitized_base_url}",
                technical_details=redact_secrets(str(e), token),
                recovery_action="Base URL과 네트워크 연결을 확인하세요",
            ) from e
        except (httpx.RequestError, httpx.InvalidURL) as e:
            # 리다이렉트 루프, 응답 디코딩 실패, 잘못된 URL
            logger.error("❌ 요청 처리 실패: %s", type(e).__name__)
            raise PipelineError(
                ErrorKind.NETWORK,
                f"Confluence 요청을 처리하지 못했습니다 ({type(e).__name__})",
                technical_details=redact_secrets(str(e), token),
                recovery_action="링크 주소를 확인하고 잠시 후 다시 시도하세요",
            ) from e

    def _prepare(self) -> tuple[WikiConnectionConfig, str]:
        """연결 설정과 토큰을 준비합니다. 설정 미완료/토큰 없음은 validation 오류."""
        config = self._config_source()
        if not config.is_configuration_complete:
            raise validation_error(
                "Confluence 연결이 설정되지 않았습니다",
                field="configuration",
                recovery_action="configure_wiki_connection으로 Base URL, 이메일, API 토큰을 설정하세요",
            )
        token = self._credentials.get(config.token_ref)
        if token is None:
            raise validation_error(
                "보안 저장소에 API 토큰이 없습니다",
                field="token",
                recovery_action="Confluence 연결 설정에서 API 토큰을 다시 입력하세요",
            )
        return config, input_sanitizer.validate_token(token)

    @staticmethod
    def _sanitize_path(path: str) -> str:
        segments = [
            input_sanitizer.validate_path_component(segment, field="path")
            for segment in path.split("/")
            if segment
        ]
        if not segments:
            raise validation_error("요청 경로가 비어 있습니다", field="path")
        return "/" + "/".join(quote(segment, safe="") for segment in segments)

    def _raise_http_error(
        self,
        e: httpx.HTTPStatusError,
        operation: str,
        token: str,
        custom_errors: dict[int, str] | None,
    ) -> None:
        """HTTP 상태 코드별 PipelineError를 발생시킵니다."""
        response = e.response
        status = response.status_code
        server_message = redact_secrets(extract_error_message(response), token)
        logger.error("❌ HTTP 오류: %d - %s", status, server_message[:_ERROR_TEXT_LIMIT])
        details = f"HTTP {status}: {server_message}"

        if status == 429:
            raise rate_limit_error(
                parse_retry_after(response.headers.get("Retry-After")),
                technical_details=details,
            ) from e

        kind, message = self._classify_status(status, operation, server_message)
        if custom_errors and status in custom_errors:
            message = custom_errors[status]

        raise PipelineError(
            kind,
            message,
            technical_details=details,
            context={"status_code": status, "operation": operation},
        ) from e

    @staticmethod
    def _classify_status(status: int, operation: str, server_message: str) -> tuple[ErrorKind, str]:
        if status == 401:
            return ErrorKind.AUTHENTICATION, "Confluence 인증 실패: 이메일 또는 API 토큰을 확인하세요"
        if status == 403:
            return ErrorKind.AUTHORIZATION, "Confluence 접근 권한이 없습니다"
        if status == 404:
            return ErrorKind.CONTENT_PROCESSING, "Confluence 페이지를 찾을 수 없습니다"
        if status in (400, 409):
            return ErrorKind.VALIDATION, f"잘못된 요청입니다: {server_message}"
        if status >= 500:
            return ErrorKind.CONNECTION, f"Confluence 서버 오류: {status}"
        if operation in ("create", "update"):
            return ErrorKind.PUBLISHING, f"페이지 {operation} 실패: {server_message}"
        return ErrorKind.NETWORK, f"Confluence API 오류: {status}"

    # ── 응답 파싱 (형식이 다르면 parsing 오류) ──

    def _parse_page(self, data: dict, default_space_key: str = "") -> WikiPage:
        try:
            page_id = data["id"]
            title = data["title"]
            version = data["version"]["number"]
        except (KeyError, TypeError) as e:
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence 페이지 응답 형식이 올바르지 않습니다",
                technical_details=f"missing field: {e}",
            ) from e

        if not str(page_id).isdigit() or not isinstance(title, str):
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence 페이지 응답의 id/title 값이 올바르지 않습니다",
                technical_details=f"id_type={type(page_id).__name__}, title_type={type(title).__name__}",
            )
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence 페이지 응답의 버전 값이 올바르지 않습니다",
                technical_details=f"version={version!r}",
            )

        space_key = self._optional_str(data, ("space", "key")) or default_space_key
        content = self._optional_str(data, ("body", "storage", "value"))
        ancestors = self._parse_ancestors(data.get("ancestors", []))

        return WikiPage(
            id=str(page_id),
            title=title,
            url=self._build_page_url(data, str(page_id), title, space_key),
            version=version,
            space_key=space_key,
            content=input_sanitizer.sanitize_html(content) if content is not None else None,
            ancestors=ancestors,
        )

    @staticmethod
    def _optional_str(data: dict, path: tuple[str, ...]) -> str | None:
        node = data
        for key in path:
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        if node is None:
            return None
        if not isinstance(node, str):
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence 응답 필드 형식이 올바르지 않습니다",
                technical_details=f"field={'.'.join(path)}, type={type(node).__name__}",
            )
        return node

    @staticmethod
    def _parse_ancestors(raw) -> tuple[PageAncestor, ...]:
        if not isinstance(raw, list):
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence 상위 페이지 목록 형식이 올바르지 않습니다",
                technical_details=f"type={type(raw).__name__}",
            )
        ancestors = []
        for item in raw:
            if not isinstance(item, dict) or "id" not in item:
                raise PipelineError(
                    ErrorKind.PARSING,
                    "Confluence 상위 페이지 항목 형식이 올바르지 않습니다",
                )
            ancestors.append(PageAncestor(id=str(item["id"]), title=str(item.get("title", ""))))
        return tuple(ancestors)

    def _build_page_url(self, data: dict, page_id: str, title: str, space_key: str) -> str:
        """응답의 _links를 우선 사용하고, 없으면 페이지 URL을 직접 만듭니다."""
        links = data.get("_links") or {}
        if not isinstance(links, dict):
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence 페이지 링크 정보 형식이 올바르지 않습니다",
                technical_details=f"_links type={type(links).__name__}",
            )
        base = links.get("base")
        webui = links.get("webui")
        if isinstance(base, str) and isinstance(webui, str) and base and webui:
            return f"{base.rstrip('/')}{webui}"

        config = self._config_source()
        if config.is_cloud and space_key:
            parts = urlsplit(config.sanitized_base_url)
            encoded_title = quote(title.replace(" ", "+"), safe="+")
            return f"{parts.scheme}://{parts.netloc}/wiki/spaces/{space_key}/pages/{page_id}/{encoded_title}"
        return f"{config.sanitized_base_url}/pages/viewpage.action?pageId={page_id}"
