import asyncio
import logging
import re
from urllib.parse import unquote_plus, urlsplit

from specwiki.application.ports.link_cache_port import LinkCachePort
from specwiki.application.ports.wiki_port import WikiPort
from specwiki.application.services.input_sanitizer import sanitize_wiki_html
from specwiki.domain.document import MAX_CONTENT_SIZE
from specwiki.domain.errors import PipelineError, validation_error
from specwiki.domain.wiki import CONTENT_MARKER_PREFIX, WikiLink, extract_page_id_from_url

logger = logging.getLogger(__name__)

_URL_PATTERN = re.compile(r"https?://[^\s<>\"'`]+")
_TRAILING_PUNCTUATION = re.compile(r"[.,;:!?)\]}>]+$")
_CONTENT_MARKER = re.compile(rf"{CONTENT_MARKER_PREFIX}\s+(.*?)@", re.DOTALL)
_DISPLAY_PATH = re.compile(r"/display/([^/]+)/([^/?#]+)")
_ANY_TAG = re.compile(r"<[^>]*>")
_TRUNCATION_SUFFIX = " ...(이하 생략)"
# Confluence API에 동시에 보내는 페이지 조회 수
MAX_CONCURRENT_REQUESTS = 3


def is_short_link(url: str) -> bool:
    return urlsplit(url).path.startswith("/x/")


def is_wiki_url(url: str, base_url: str) -> bool:
    """설정된 Confluence 호스트의 페이지 링크인지 확인합니다."""
    try:
        parts = urlsplit(url)
        base_host = (urlsplit(base_url).hostname or "").lower()
    except ValueError:
        return False
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return False
    if not base_host or parts.hostname.lower() != base_host:
        return False
    path = parts.path
    return (
        "/wiki/" in path
        or "/pages/" in path
        or "/display/" in path
        or path.startswith("/x/")
        or "viewpage.action" in path
    )


def sanitize_for_prompt(text: str) -> str:
    """LLM으로 보내기 전 @conf-cnt 마커를 정리합니다. 빈 마커는 제거하고 태그/공백을 정규화합니다."""
    if not text or CONTENT_MARKER_PREFIX not in text:
        return text

    def _normalize(match: re.Match) -> str:
        content = match.group(1).strip()
        if not content:
            logger.warning("빈 Confluence 콘텐츠 마커 제거")
            return ""
        content = " ".join(_ANY_TAG.sub(" ", content).split())
        return f"{CONTENT_MARKER_PREFIX} {content}@"

    return _CONTENT_MARKER.sub(_normalize, text)


def _clean_url(raw: str) -> str:
    return _TRAILING_PUNCTUATION.sub("", raw)


class ResolveWikiLinksUseCase:
    """사용자 텍스트의 Wiki 링크를 찾아 페이지 내용을 가져오고 캐시합니다.

    해석에 실패해도 원본 URL을 담은 WikiLink.failed를 반환하여 참조가 사라지지 않게 합니다.
    """

    def __init__(
        self,
        wiki_port: WikiPort,
        link_cache: LinkCachePort,
        max_content_size: int = MAX_CONTENT_SIZE,
        max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS,
    ):
        self._wiki = wiki_port
        self._cache = link_cache
        self._max_content_size = max_content_size
        self._max_concurrent_requests = max(1, max_concurrent_requests)

    async def resolve(self, url: str, base_url: str) -> WikiLink:
        """URL 하나를 해석합니다. TTL 안의 캐시가 있으면 네트워크 호출을 생략합니다."""
        page_id = ""
        try:
            if not is_wiki_url(url, base_url):
                raise validation_error(
                    "설정된 Confluence 호스트의 페이지 링크가 아닙니다",
                    field="url",
                )

            cached = self._cache.get(url)
            if cached is not None:
                logger.info("링크 캐시 적중: %s", url)
                return cached

            page_id = extract_page_id_from_url(url) or ""
            page = None
            if not page_id and is_short_link(url):
                final_url = await self._wiki.resolve_short_link(url)
                page_id = extract_page_id_from_url(final_url) or ""
                if not page_id:
                    page = await self._find_display_page(final_url)
            elif not page_id:
                page = await self._find_display_page(url)

            if page is None:
                if not page_id:
                    raise validation_error("URL에서 페이지 ID를 찾을 수 없습니다", field="url")
                page = await self._wiki.get_page(page_id)
        except PipelineError as e:
            logger.warning("링크 해석 실패: %s [%s] %s", url, e.kind.value, e.message)
            return WikiLink.failed(url, e.message, page_id=page_id)

        content = sanitize_wiki_html(page.content or "")
        if len(content) > self._max_content_size:
            logger.warning(
                "페이지 내용이 커서 잘라냄: page_id=%s, %d자 → %d자",
                page.id, len(content), self._max_content_size,
            )
            content = content[: self._max_content_size] + _TRUNCATION_SUFFIX

        link = WikiLink.success(url, page.id, content)
        self._cache.put(link)
        logger.info("✅ 링크 해석 완료: %s → page_id=%s, %d자", url, page.id, len(content))
        return link

    def extract_links(self, text: str, base_url: str) -> list[str]:
        """텍스트에서 Wiki 링크를 순서대로, 중복 없이 추출합니다."""
        if not text:
            return []
        urls = (_clean_url(m.group()) for m in _URL_PATTERN.finditer(text))
        return list(dict.fromkeys(u for u in urls if is_wiki_url(u, base_url)))

    async def process_text(self, text: str, base_url: str) -> tuple[str, list[WikiLink]]:
        """텍스트의 모든 Wiki 링크를 동시에 해석하고 콘텐츠 마커로 치환합니다.

        동시 요청 수는 max_concurrent_requests로 제한됩니다.
        """
        urls = self.extract_links(text, base_url)
        if not urls:
            return text, []

        logger.info("Wiki 링크 %d건 해석 시작 (동시 %d건)", len(urls), self._max_concurrent_requests)
        semaphore = asyncio.Semaphore(self._max_concurrent_requests)

        async def _bounded(url: str) -> WikiLink:
            async with semaphore:
                return await self.resolve(url, base_url)

        links = await asyncio.gather(*(_bounded(url) for url in urls))
        by_url = {link.original_url: link for link in links}

        def _replace(match: re.Match) -> str:
            raw = match.group()
            cleaned = _clean_url(raw)
            link = by_url.get(cleaned)
            if link is None:
                return raw
            return link.content_marker + raw[len(cleaned):]

        processed = _URL_PATTERN.sub(_replace, text)
        failed = sum(1 for link in links if not link.is_valid)
        logger.info("Wiki 링크 해석 완료: 성공 %d건, 실패 %d건", len(links) - failed, failed)
        return sanitize_for_prompt(processed), list(links)

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> dict[str, int]:
        self._cache.cleanup_expired()
        return self._cache.stats()

    async def _find_display_page(self, url: str):
        """/display/{SPACE}/{제목} 형식 링크를 제목 검색으로 해석합니다."""
        match = _DISPLAY_PATH.search(urlsplit(url).path)
        if match is None:
            return None
        space_key = unquote_plus(match.group(1))
        title = unquote_plus(match.group(2))
        page = await self._wiki.find_page_by_title(space_key, title)
        if page is None:
            raise validation_error(f"페이지를 찾을 수 없습니다: '{title}' (space: {space_key})", field="url")
        return page
