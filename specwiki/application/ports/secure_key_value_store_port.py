from typing import Protocol


class SecureKeyValueStorePort(Protocol):
    """플랫폼 보안 저장소 계약 (키 단위 원자성은 구현체가 보장)"""

    def store(self, key: str, value: str) -> None:
        """값을 저장합니다. 같은 키가 있으면 덮어씁니다."""
        ...

    def read(self, key: str) -> str | None:
        """값을 조회합니다. 없으면 None을 반환합니다."""
        ...

    def delete(self, key: str) -> None:
        """값을 삭제합니다. 없는 키는 무시합니다."""
        ...
