import logging
import re

from jinja2 import BaseLoader, Environment, Undefined

from specwiki.application.ports.template_repository_port import TemplateRepositoryPort
from specwiki.domain.document import END_MARKER, START_MARKER, OutputFormat
from specwiki.domain.errors import validation_error

logger = logging.getLogger(__name__)

_MIN_REQUIREMENTS_LENGTH = 10
_HTML_TAG = re.compile(r"<[a-zA-Z][^>]*>")
_UNRESOLVED_MARKER = re.compile(r"@conf-cnt\s*@")


class LoggingUndefined(Undefined):
    """미치환 변수 접근 시 경고 로그를 출력합니다."""
    def __str__(self) -> str:
        logger.warning("템플릿 미치환 변수: %s", self._undefined_name)
        return ""


class PromptBuilder:
    """Jinja2 기반 LLM 프롬프트 생성기

    시스템 프롬프트에는 선택한 형식의 작성 규칙과 @@@START@@@/@@@END@@@ 마커 지시가 들어갑니다.
    """

    def __init__(self, template_repo: TemplateRepositoryPort):
        self._repo = template_repo
        # 프롬프트는 HTML이 아니므로 escape 하지 않음
        self._env = Environment(
            loader=BaseLoader(),
            undefined=LoggingUndefined,
            autoescape=False,
            keep_trailing_newline=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def build(
        self,
        requirements: str,
        output_format: OutputFormat,
        template_content: str = "",
        changes: str = "",
    ) -> dict[str, str]:
        """시스템/사용자 프롬프트를 생성합니다.

        Args:
            requirements: 사용자 요구사항 (Wiki 링크는 이미 @conf-cnt 마커로 치환된 상태)
            output_format: 생성할 문서 형식
            template_content: 사용자 문서 템플릿. 비어있으면 기본 구조 사용
            changes: 변경/보완 사항

        Returns:
            {"system": ..., "user": ...}
        """
        self._validate(requirements, output_format, template_content)

        system_template = self._repo.get_prompt_template(output_format.value)
        system = self._env.from_string(system_template.body).render(
            TEMPLATE=template_content.strip(),
            START_MARKER=START_MARKER,
            END_MARKER=END_MARKER,
        )
        user = self._env.from_string(self._repo.get_user_prompt_template()).render(
            REQUIREMENTS=requirements.strip(),
            CHANGES=changes.strip(),
            FORMAT_LABEL=output_format.label,
            START_MARKER=START_MARKER,
            END_MARKER=END_MARKER,
        )
        logger.info(
            "프롬프트 생성 완료: format=%s, system=%d자, user=%d자",
            output_format.value, len(system), len(user),
        )
        return {"system": system.strip(), "user": user.strip()}

    @staticmethod
    def _validate(requirements: str, output_format: OutputFormat, template_content: str) -> None:
        text = (requirements or "").strip()
        if not text:
            raise validation_error(
                "요구사항이 비어 있습니다",
                field="requirements",
                recovery_action="명세서 생성을 위한 요구사항을 입력하세요",
            )
        if len(text) < _MIN_REQUIREMENTS_LENGTH:
            raise validation_error(
                "요구사항이 너무 짧습니다",
                field="requirements",
                recovery_action=f"요구사항을 {_MIN_REQUIREMENTS_LENGTH}자 이상으로 구체화하세요",
                technical_details=f"length={len(text)}",
            )
        if _UNRESOLVED_MARKER.search(text):
            raise validation_error(
                "처리되지 않은 Confluence 콘텐츠 마커가 있습니다",
                field="requirements",
                recovery_action="Wiki 링크 해석을 다시 실행하세요",
            )
        if output_format is OutputFormat.MARKDOWN and _HTML_TAG.search(template_content or ""):
            raise validation_error(
                "Markdown 형식에는 HTML 태그가 포함된 템플릿을 사용할 수 없습니다",
                field="template_content",
                recovery_action="Markdown 템플릿을 사용하거나 출력 형식을 Confluence로 바꾸세요",
            )
        if output_format is OutputFormat.CONFLUENCE and template_content and not _HTML_TAG.search(template_content):
            logger.warning("Confluence 형식 요청이지만 템플릿이 Markdown으로 보입니다")
