from typing import Protocol

from specwiki.domain.prompt import PromptTemplate


class TemplateRepositoryPort(Protocol):
    """LLM 프롬프트 템플릿 저장소 계약"""

    def get_prompt_template(self, output_format: str) -> PromptTemplate:
        """출력 형식에 해당하는 시스템 프롬프트 템플릿을 반환합니다."""
        ...

    def list_formats(self) -> list[str]:
        """사용 가능한 출력 형식 목록을 반환합니다."""
        ...

    def get_user_prompt_template(self) -> str:
        """사용자 프롬프트 템플릿 문자열을 반환합니다."""
        ...

    def reload(self) -> None:
        """캐시를 무효화하고 설정 파일을 다시 로드합니다."""
        ...
