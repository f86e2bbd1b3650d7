from typing import Protocol

from specwiki.domain.wiki import WikiConnectionConfig


class ConnectionConfigRepositoryPort(Protocol):
    """Confluence 연결 설정 영속화 계약"""

    def load(self) -> WikiConnectionConfig:
        """저장된 설정을 불러옵니다. 없으면 기본값(비활성)을 반환합니다."""
        ...

    def save(self, config: WikiConnectionConfig) -> None:
        """설정을 저장합니다."""
        ...
