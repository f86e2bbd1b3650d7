import json
import logging
import os
from pathlib import Path

from specwiki.domain.errors import ErrorKind, PipelineError
from specwiki.domain.wiki import WikiConnectionConfig

logger = logging.getLogger(__name__)


class JsonConnectionConfigRepository:
    """JSON 파일 기반 Confluence 연결 설정 저장소.

    파일에는 tokenRef(보안 저장소 참조)만 저장되며 실제 토큰은 기록하지 않습니다.
    """

    def __init__(self, json_path: str | Path):
        self._path = Path(json_path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> WikiConnectionConfig:
        if not self._path.exists():
            return WikiConnectionConfig()
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("❌ 연결 설정 파일 읽기 실패: %s (%s)", self._path, type(e).__name__)
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence 연결 설정 파일을 읽을 수 없습니다",
                technical_details=f"{self._path}: {type(e).__name__}",
                recovery_action="configure_wiki_connection으로 연결 정보를 다시 설정하세요",
            ) from e
        if not isinstance(data, dict):
            raise PipelineError(
                ErrorKind.PARSING,
                "Confluence 연결 설정 파일 형식이 올바르지 않습니다",
                technical_details=f"{self._path}: top-level {type(data).__name__}",
            )
        return WikiConnectionConfig.from_dict(data)

    def save(self, config: WikiConnectionConfig) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(config.to_dict(), f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self._path)
        logger.info("연결 설정 저장: %s (enabled=%s)", self._path, config.enabled)
