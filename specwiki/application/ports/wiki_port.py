from typing import Protocol

from specwiki.domain.wiki import WikiPage


class WikiPort(Protocol):
    """Confluence Wiki 서비스 계약 (Port)"""

    async def get_page(self, page_id: str) -> WikiPage:
        """본문, 버전, 상위 페이지 정보를 포함하여 페이지를 조회합니다."""
        ...

    async def create_page(
        self,
        space_key: str,
        parent_id: str,
        title: str,
        body: str,
    ) -> WikiPage:
        """새 페이지를 생성합니다. body는 storage format HTML입니다."""
        ...

    async def update_page(
        self,
        page_id: str,
        title: str,
        body: str,
        current_version: int,
        space_key: str,
    ) -> WikiPage:
        """기존 페이지를 업데이트합니다. 전송 버전은 current_version + 1입니다."""
        ...

    async def find_page_by_title(self, space_key: str, title: str) -> WikiPage | None:
        """Space 내에서 정확한 제목으로 페이지를 검색합니다 (/display/ 링크용)."""
        ...

    async def resolve_short_link(self, url: str) -> str:
        """/x/ 단축 링크의 리다이렉트를 따라가 최종 URL을 반환합니다."""
        ...

    async def test_connection(self) -> bool:
        """연결과 인증이 유효한지 확인합니다."""
        ...
