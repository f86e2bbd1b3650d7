from datetime import datetime, timedelta
from unittest.mock import patch

import keyring.errors
import pytest

from specwiki.adapters.outbound.in_memory_key_value_store import InMemoryKeyValueStore
from specwiki.adapters.outbound.in_memory_link_cache import InMemoryLinkCache
from specwiki.adapters.outbound.keyring_store import KeyringStore
from specwiki.domain.wiki import WikiLink


def make_link(url: str, age_minutes: int = 0) -> WikiLink:
    link = WikiLink.success(url, "1", "본문")
    if age_minutes:
        link = WikiLink(
            original_url=url,
            page_id="1",
            extracted_content="본문",
            processed_at=datetime.now() - timedelta(minutes=age_minutes),
        )
    return link


class TestInMemoryLinkCache:
    def test_put_and_get(self):
        cache = InMemoryLinkCache()
        link = make_link("https://a")
        cache.put(link)
        assert cache.get("https://a") == link

    def test_last_write_wins(self):
        cache = InMemoryLinkCache()
        cache.put(make_link("https://a"))
        newer = WikiLink.success("https://a", "2", "새 본문")
        cache.put(newer)
        assert cache.get("https://a") == newer
        assert cache.stats()["total"] == 1

    def test_expired_entry_is_dropped(self):
        cache = InMemoryLinkCache(ttl_minutes=30)
        cache.put(make_link("https://a", age_minutes=31))
        assert cache.get("https://a") is None
        assert cache.stats()["total"] == 0

    def test_stats_and_cleanup(self):
        cache = InMemoryLinkCache(ttl_minutes=30)
        cache.put(make_link("https://fresh"))
        cache.put(make_link("https://stale", age_minutes=45))
        assert cache.stats() == {"total": 2, "fresh": 1, "stale": 1}
        assert cache.cleanup_expired() == 1
        assert cache.stats() == {"total": 1, "fresh": 1, "stale": 0}

    def test_max_entries_evicts_oldest(self):
        cache = InMemoryLinkCache(max_entries=2)
        for name in ("a", "b", "c"):
            cache.put(make_link(f"https://{name}"))
        assert cache.get("https://a") is None
        assert cache.get("https://c") is not None

    def test_clear(self):
        cache = InMemoryLinkCache()
        cache.put(make_link("https://a"))
        cache.clear()
        assert cache.stats()["total"] == 0


class TestInMemoryKeyValueStore:
    def test_store_read_delete(self):
        store = InMemoryKeyValueStore()
        store.store("k", "v")
        assert store.read("k") == "v"
        store.delete("k")
        assert store.read("k") is None
        store.delete("k")


class TestKeyringStore:
    @patch("specwiki.adapters.outbound.keyring_store.keyring")
    def test_delegates_to_keyring(self, mock_keyring):
        mock_keyring.get_password.return_value = "cipher"
        store = KeyringStore(service="specwiki-test")

        store.store("secure_1", "cipher")
        assert store.read("secure_1") == "cipher"
        store.delete("secure_1")

        mock_keyring.set_password.assert_called_once_with("specwiki-test", "secure_1", "cipher")
        mock_keyring.get_password.assert_called_once_with("specwiki-test", "secure_1")
        mock_keyring.delete_password.assert_called_once_with("specwiki-test", "secure_1")

    def test_delete_missing_is_ignored(self):
        with patch("keyring.delete_password", side_effect=keyring.errors.PasswordDeleteError("missing")):
            KeyringStore().delete("secure_404")

    def test_backend_errors_propagate(self):
        with patch("keyring.get_password", side_effect=keyring.errors.KeyringError("locked")):
            with pytest.raises(keyring.errors.KeyringError):
                KeyringStore().read("secure_1")
