import logging
from pathlib import Path

import yaml

from specwiki.domain.prompt import PromptTemplate

logger = logging.getLogger(__name__)


class YamlTemplateRepository:
    """YAML 파일 기반 프롬프트 템플릿 저장소 (mtime 캐시)"""

    def __init__(self, yaml_path: str | Path):
        self._path = Path(yaml_path)
        self._cache: dict | None = None
        self._cache_mtime: float = 0.0

    def _ensure_loaded(self) -> dict:
        """파일이 변경되었으면 다시 로드합니다."""
        try:
            current_mtime = self._path.stat().st_mtime
        except FileNotFoundError:
            raise FileNotFoundError(
                f"프롬프트 템플릿 YAML 파일을 찾을 수 없습니다: {self._path}"
            )

        if self._cache is None or current_mtime > self._cache_mtime:
            logger.info("YAML 템플릿 로드: %s", self._path)
            with open(self._path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"템플릿 YAML 최상위는 매핑이어야 합니다: {self._path}")
            self._cache = data
            self._cache_mtime = current_mtime
            logger.info(
                "YAML 템플릿 로드 완료: %d 형식",
                len(self._cache.get("formats", {})),
            )

        return self._cache

    def get_prompt_template(self, output_format: str) -> PromptTemplate:
        data = self._ensure_loaded()
        formats = data.get("formats", {})
        if output_format not in formats:
            available = list(formats.keys())
            raise ValueError(
                f"존재하지 않는 출력 형식: '{output_format}'. 사용 가능: {available}"
            )
        entry = formats[output_format]
        return PromptTemplate(
            output_format=output_format,
            body=entry.get("body", ""),
            description=entry.get("description", ""),
        )

    def list_formats(self) -> list[str]:
        return list(self._ensure_loaded().get("formats", {}).keys())

    def get_user_prompt_template(self) -> str:
        data = self._ensure_loaded()
        if not data.get("user_prompt"):
            raise ValueError(f"user_prompt 템플릿이 없습니다: {self._path}")
        return data["user_prompt"]

    def reload(self) -> None:
        """캐시를 강제로 무효화합니다."""
        logger.info("템플릿 캐시 강제 무효화")
        self._cache = None
        self._cache_mtime = 0.0
