import logging
import threading
from collections import OrderedDict
from datetime import timedelta

from specwiki.domain.wiki import LINK_CACHE_TTL_MINUTES, WikiLink

logger = logging.getLogger(__name__)

_DEFAULT_MAX_ENTRIES = 100


class InMemoryLinkCache:
    """In-memory Wiki 링크 캐시 (TTL 만료 + 최대 개수 초과 시 오래된 항목부터 제거)"""

    def __init__(self, ttl_minutes: int = LINK_CACHE_TTL_MINUTES, max_entries: int = _DEFAULT_MAX_ENTRIES):
        self._links: OrderedDict[str, WikiLink] = OrderedDict()
        self._ttl = timedelta(minutes=ttl_minutes)
        self._max_entries = max_entries
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def get(self, url: str) -> WikiLink | None:
        with self._lock:
            link = self._links.get(url)
            if link is None:
                return None
            if not link.is_fresh(self._ttl):
                del self._links[url]
                logger.info("만료된 링크 캐시 삭제: %s", url)
                return None
            return link

    def put(self, link: WikiLink) -> None:
        with self._lock:
            # 같은 URL 재저장 시 마지막 값이 남고 순서는 최신으로 이동
            self._links.pop(link.original_url, None)
            self._links[link.original_url] = link
            while len(self._links) > self._max_entries:
                evicted, _ = self._links.popitem(last=False)
                logger.info("링크 캐시 최대 개수 초과, 제거: %s", evicted)
        logger.info("링크 캐시 저장: %s (page_id=%s)", link.original_url, link.page_id or "-")

    def clear(self) -> None:
        with self._lock:
            count = len(self._links)
            self._links.clear()
        logger.info("링크 캐시 초기화: %d건 삭제", count)

    def stats(self) -> dict[str, int]:
        with self._lock:
            fresh = sum(1 for link in self._links.values() if link.is_fresh(self._ttl))
            total = len(self._links)
        return {"total": total, "fresh": fresh, "stale": total - fresh}

    def cleanup_expired(self) -> int:
        with self._lock:
            expired = [url for url, link in self._links.items() if not link.is_fresh(self._ttl)]
            for url in expired:
                del self._links[url]
        if expired:
            logger.info("만료 링크 정리: %d건 삭제", len(expired))
        return len(expired)
