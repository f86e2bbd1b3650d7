from typing import Protocol

from specwiki.domain.wiki import WikiLink


class LinkCachePort(Protocol):
    """해석된 Wiki 링크 캐시 계약 (URL 단위 키)"""

    def get(self, url: str) -> WikiLink | None:
        """유효 시간 내의 링크를 반환합니다. 만료되었으면 None을 반환합니다."""
        ...

    def put(self, link: WikiLink) -> None:
        """링크를 저장합니다. 같은 URL은 마지막 저장값이 유지됩니다."""
        ...

    def clear(self) -> None:
        """캐시를 모두 비웁니다."""
        ...

    def stats(self) -> dict[str, int]:
        """전체 / 유효 / 만료 항목 수를 반환합니다."""
        ...

    def cleanup_expired(self) -> int:
        """만료된 항목을 정리합니다. 삭제된 항목 수를 반환합니다."""
        ...
