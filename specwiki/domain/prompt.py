from dataclasses import dataclass


@dataclass(frozen=True)
class PromptTemplate:
    """출력 형식별 LLM 시스템 프롬프트 템플릿"""
    output_format: str
    body: str
    description: str = ""
