import logging
from dataclasses import replace

from specwiki.application.ports.connection_config_repository_port import ConnectionConfigRepositoryPort
from specwiki.application.services import input_sanitizer
from specwiki.application.services.secure_credential_store import SecureCredentialStore
from specwiki.application.use_cases.test_wiki_connection import TestWikiConnectionUseCase
from specwiki.domain.errors import PipelineError, validation_error

logger = logging.getLogger(__name__)


class ConfigureWikiConnectionUseCase:
    """
    Confluence 연결 정보를 저장하는 Use Case.

    - Base URL/이메일 정규화 및 검증
    - API 토큰은 보안 저장소에 보관하고 설정에는 참조값만 기록 (기존 참조가 있으면 교체)
    - verify=True면 저장 직후 연결을 테스트하여 검증 결과를 기록
    """

    def __init__(
        self,
        config_repo: ConnectionConfigRepositoryPort,
        credentials: SecureCredentialStore,
        connection_tester: TestWikiConnectionUseCase,
    ):
        self._repo = config_repo
        self._credentials = credentials
        self._tester = connection_tester

    async def execute(
        self,
        base_url: str,
        email: str,
        token: str | None = None,
        enabled: bool = True,
        verify: bool = True,
    ) -> dict:
        base_url = input_sanitizer.sanitize_base_url(base_url)
        email = input_sanitizer.sanitize_email(email)
        current = self._repo.load()

        config = replace(current, enabled=enabled, base_url=base_url, email=email)
        if token:
            if current.token_ref:
                new_ref = self._credentials.rotate(current.token_ref, token)
            else:
                new_ref = self._credentials.store(token)
            config = config.with_token_ref(new_ref)
            logger.info("API 토큰 갱신 완료")
        elif not current.token_ref:
            raise validation_error(
                "API 토큰이 필요합니다",
                field="token",
                recovery_action="Confluence에서 발급한 API 토큰을 입력하세요",
            )
        elif (current.base_url, current.email) != (base_url, email):
            # 대상이 바뀌면 기존 검증 결과는 무효
            config = replace(config, is_valid=False, last_validated=None)

        self._repo.save(config)
        logger.info("연결 설정 저장: base_url=%s, email=%s, enabled=%s", base_url, email, enabled)

        result = {
            "enabled": config.enabled,
            "base_url": config.sanitized_base_url,
            "api_base_url": config.api_base_url,
            "email": config.email,
            "is_cloud": config.is_cloud,
            "configured": config.is_configuration_complete,
            "verified": False,
        }
        if not (verify and config.is_configuration_complete):
            return result

        try:
            await self._tester.execute()
        except PipelineError as e:
            result["verify_error"] = e.message
            result["verify_error_kind"] = e.kind.value
            return result
        result["verified"] = True
        return result
