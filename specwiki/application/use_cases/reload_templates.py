import logging

from specwiki.application.ports.template_repository_port import TemplateRepositoryPort

logger = logging.getLogger(__name__)


class ReloadTemplatesUseCase:
    """프롬프트 템플릿 캐시를 무효화하고 다시 로드하는 Use Case"""

    def __init__(self, template_repo: TemplateRepositoryPort):
        self._repo = template_repo

    def execute(self) -> dict:
        logger.info("템플릿 리로드 실행")
        self._repo.reload()

        # 검증: 모든 형식이 로드 가능한지 확인
        formats = self._repo.list_formats()
        body_lengths = {
            name: len(self._repo.get_prompt_template(name).body) for name in formats
        }
        user_prompt = self._repo.get_user_prompt_template()

        return {
            "status": "success",
            "formats": formats,
            "body_lengths": body_lengths,
            "user_prompt_length": len(user_prompt),
        }
