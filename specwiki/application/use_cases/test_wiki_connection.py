import logging

from specwiki.application.ports.connection_config_repository_port import ConnectionConfigRepositoryPort
from specwiki.application.ports.wiki_port import WikiPort
from specwiki.domain.errors import PipelineError, validation_error

logger = logging.getLogger(__name__)


class TestWikiConnectionUseCase:
    """저장된 설정으로 Confluence 연결을 확인하고 검증 결과를 기록하는 Use Case"""

    __test__ = False  # pytest 수집 대상 아님

    def __init__(self, wiki_port: WikiPort, config_repo: ConnectionConfigRepositoryPort):
        self._wiki = wiki_port
        self._repo = config_repo

    async def execute(self) -> dict:
        config = self._repo.load()
        if not config.is_configuration_complete:
            raise validation_error(
                "Confluence 연결이 설정되지 않았습니다",
                field="connection",
                recovery_action="configure_wiki_connection으로 Base URL, 이메일, API 토큰을 설정하세요",
            )

        logger.info("연결 테스트 시작: %s", config.sanitized_base_url)
        try:
            await self._wiki.test_connection()
        except PipelineError as e:
            self._repo.save(config.mark_validated(False))
            logger.warning("❌ 연결 테스트 실패: [%s] %s", e.kind.value, e.message)
            raise

        validated = config.mark_validated(True)
        self._repo.save(validated)
        return {
            "connected": True,
            "base_url": validated.sanitized_base_url,
            "api_base_url": validated.api_base_url,
            "is_cloud": validated.is_cloud,
            "last_validated": validated.last_validated.isoformat(),
        }
