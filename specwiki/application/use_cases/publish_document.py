import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from specwiki.application.ports.wiki_port import WikiPort
from specwiki.application.services import input_sanitizer
from specwiki.application.services.format_converter import FormatConverter
from specwiki.application.services.secure_credential_store import SecureCredentialStore
from specwiki.domain.document import OutputFormat
from specwiki.domain.errors import PipelineError, redact_secrets, validation_error
from specwiki.domain.publish import PublishOperation, PublishProgress, PublishResult, PublishState
from specwiki.domain.wiki import WikiConnectionConfig, WikiPage, extract_page_id_from_url

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PublishProgress], None]

_TRANSITIONS: dict[PublishState | None, set[PublishState]] = {
    None:                    {PublishState.VALIDATING},
    PublishState.VALIDATING: {PublishState.BACKING_UP, PublishState.WRITING, PublishState.FAILED},
    PublishState.BACKING_UP: {PublishState.WRITING, PublishState.FAILED},
    PublishState.WRITING:    {PublishState.FINALIZING, PublishState.FAILED},
    PublishState.FINALIZING: {PublishState.SUCCEEDED, PublishState.FAILED},
    PublishState.SUCCEEDED:  set(),
    PublishState.FAILED:     set(),
}

_STEP_PROGRESS = {
    PublishState.VALIDATING: 0.1,
    PublishState.BACKING_UP: 0.3,
    PublishState.WRITING: 0.6,
    PublishState.FINALIZING: 0.9,
}

_STEP_MESSAGES = {
    PublishState.VALIDATING: "입력값과 연결 설정을 검증하는 중",
    PublishState.BACKING_UP: "기존 페이지를 백업하는 중",
    PublishState.WRITING: "Confluence에 페이지를 쓰는 중",
    PublishState.FINALIZING: "페이지 주소를 확인하는 중",
}


@dataclass
class PublishRun:
    """게시 1회 실행 기록: 발생한 진행 이벤트, 수정 전 백업, 최종 결과"""
    operation: PublishOperation
    state: PublishState | None = None
    progress: list[PublishProgress] = field(default_factory=list)
    backup: WikiPage | None = None
    result: PublishResult | None = None

    @property
    def last_progress(self) -> float:
        return self.progress[-1].progress if self.progress else 0.0

    def to_dict(self) -> dict:
        return {
            "operation": self.operation.value,
            "state": self.state.value if self.state else None,
            "progress": [p.to_dict() for p in self.progress],
            "backup": {
                "pageId": self.backup.id,
                "title": self.backup.title,
                "version": self.backup.version,
            } if self.backup else None,
            "result": self.result.to_dict() if self.result else None,
        }


class PublishDocumentUseCase:
    """
    문서 게시 상태머신.

    validating → (backing_up: 수정 시에만) → writing → finalizing → succeeded
    어느 단계에서든 실패하면 오류 진행 이벤트를 먼저 내보낸 뒤 실패 결과를 반환합니다.
    예외를 호출자에게 던지지 않습니다.
    """

    def __init__(
        self,
        wiki_port: WikiPort,
        config_source: Callable[[], WikiConnectionConfig],
        credentials: SecureCredentialStore,
        converter: FormatConverter | None = None,
    ):
        self._wiki = wiki_port
        self._config_source = config_source
        self._credentials = credentials
        self._converter = converter or FormatConverter()

    # ── 진입점 ──

    async def create(
        self,
        parent_page_url: str,
        title: str,
        content: str,
        content_format: OutputFormat,
        on_progress: ProgressCallback | None = None,
    ) -> PublishResult:
        run = await self.create_run(parent_page_url, title, content, content_format, on_progress)
        return run.result

    async def update(
        self,
        page_url: str,
        content: str,
        content_format: OutputFormat,
        title: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> PublishResult:
        run = await self.update_run(page_url, content, content_format, title, on_progress)
        return run.result

    async def create_run(
        self,
        parent_page_url: str,
        title: str,
        content: str,
        content_format: OutputFormat,
        on_progress: ProgressCallback | None = None,
    ) -> PublishRun:
        run = PublishRun(operation=PublishOperation.CREATE)
        try:
            self._transition(run, PublishState.VALIDATING, on_progress)
            title = input_sanitizer.validate_title(title)
            self._require_content(content)
            self._require_configured()
            parent_id = self._page_id_from(parent_page_url, field_name="parentPageUrl")
            parent = await self._wiki.get_page(parent_id)
            if not parent.space_key:
                raise validation_error(
                    "상위 페이지의 Space를 확인할 수 없습니다",
                    field="parentPageUrl",
                )

            self._transition(run, PublishState.WRITING, on_progress)
            body = self._to_storage(content, content_format)
            page = await self._wiki.create_page(parent.space_key, parent.id, title, body)

            self._transition(run, PublishState.FINALIZING, on_progress)
            self._finish(run, page, title, on_progress)
        except Exception as e:
            self._fail(run, e, on_progress)
        return run

    async def update_run(
        self,
        page_url: str,
        content: str,
        content_format: OutputFormat,
        title: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> PublishRun:
        run = PublishRun(operation=PublishOperation.UPDATE)
        try:
            self._transition(run, PublishState.VALIDATING, on_progress)
            if title is not None:
                title = input_sanitizer.validate_title(title)
            self._require_content(content)
            self._require_configured()
            page_id = self._page_id_from(page_url, field_name="pageUrl")

            self._transition(run, PublishState.BACKING_UP, on_progress)
            run.backup = await self._wiki.get_page(page_id)
            logger.info(
                "수정 전 백업: page_id=%s, version=%d, body_len=%d",
                run.backup.id, run.backup.version, len(run.backup.content or ""),
            )

            self._transition(run, PublishState.WRITING, on_progress)
            body = self._to_storage(content, content_format)
            final_title = title or run.backup.title
            page = await self._wiki.update_page(
                page_id=run.backup.id,
                title=final_title,
                body=body,
                current_version=run.backup.version,
                space_key=run.backup.space_key,
            )

            self._transition(run, PublishState.FINALIZING, on_progress)
            self._finish(run, page, final_title, on_progress)
        except Exception as e:
            self._fail(run, e, on_progress)
        return run

    # ── 상태 전이 ──

    def _transition(
        self,
        run: PublishRun,
        target: PublishState,
        on_progress: ProgressCallback | None,
    ) -> None:
        allowed = _TRANSITIONS.get(run.state, set())
        if target not in allowed:
            raise RuntimeError(
                f"잘못된 상태 전이: {run.state.value if run.state else 'start'} → {target.value}. "
                f"허용: {[s.value for s in allowed]}"
            )
        logger.info(
            "상태 전이: %s → %s (%s)",
            run.state.value if run.state else "start", target.value, run.operation.value,
        )
        run.state = target

        if target in _STEP_PROGRESS:
            self._emit(run, PublishProgress.for_step(
                target.value, _STEP_MESSAGES[target], _STEP_PROGRESS[target],
            ), on_progress)

    def _finish(
        self,
        run: PublishRun,
        page: WikiPage,
        title: str,
        on_progress: ProgressCallback | None,
    ) -> None:
        if not page.url:
            raise validation_error("게시된 페이지 URL을 확인할 수 없습니다", field="pageUrl")
        self._transition(run, PublishState.SUCCEEDED, on_progress)
        run.result = PublishResult.succeeded(run.operation, page.url, page.id, title)
        self._emit(run, PublishProgress.complete(
            PublishState.SUCCEEDED.value, run.result.status_message,
        ), on_progress)
        logger.info("✅ %s", run.result.detailed_message)

    def _fail(self, run: PublishRun, error: Exception, on_progress: ProgressCallback | None) -> None:
        if isinstance(error, PipelineError):
            message = error.message
            logger.warning(
                "❌ 게시 실패: step=%s [%s] %s",
                run.state.value if run.state else "start", error.kind.value, message,
            )
        else:
            message = f"{type(error).__name__}: {error}"
            logger.error("❌ 게시 중 예기치 않은 오류: %s", type(error).__name__, exc_info=True)
        message = redact_secrets(message, *self._known_secrets())

        step = run.state.value if run.state else PublishState.VALIDATING.value
        if run.state is not None and PublishState.FAILED in _TRANSITIONS.get(run.state, set()):
            run.state = PublishState.FAILED
        self._emit(run, PublishProgress.error(
            step, "게시에 실패했습니다", message, run.last_progress,
        ), on_progress)
        run.result = PublishResult.failure(run.operation, message)

    def _emit(self, run: PublishRun, progress: PublishProgress, on_progress: ProgressCallback | None) -> None:
        run.progress.append(progress)
        if on_progress is None:
            return
        try:
            on_progress(progress)
        except Exception as e:
            logger.warning("진행 콜백 오류 (무시): %s: %s", type(e).__name__, e)

    # ── 검증/변환 ──

    def _require_configured(self) -> WikiConnectionConfig:
        config = self._config_source()
        if not config.is_configuration_complete:
            raise validation_error(
                "Confluence 연결이 설정되지 않았습니다",
                field="connection",
                recovery_action="configure_wiki_connection으로 연결 정보를 먼저 설정하세요",
            )
        return config

    @staticmethod
    def _require_content(content: str) -> None:
        if not content or not content.strip():
            raise validation_error("게시할 내용이 비어 있습니다", field="content")

    @staticmethod
    def _page_id_from(url: str, field_name: str) -> str:
        url = input_sanitizer.sanitize_page_url(url)
        page_id = extract_page_id_from_url(url)
        if not page_id:
            raise validation_error(
                "페이지 URL에서 페이지 ID를 찾을 수 없습니다",
                field=field_name,
                recovery_action="/pages/<ID>/ 또는 pageId=<ID> 형식의 URL을 사용하세요",
            )
        return page_id

    def _to_storage(self, content: str, content_format: OutputFormat) -> str:
        if content_format is OutputFormat.MARKDOWN:
            return self._converter.markdown_to_storage(content)
        return input_sanitizer.sanitize_html(content)

    def _known_secrets(self) -> list[str]:
        try:
            config = self._config_source()
            token = self._credentials.get(config.token_ref) if config.token_ref else None
        except PipelineError:
            return []
        return [token] if token else []
