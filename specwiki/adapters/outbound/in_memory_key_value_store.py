import logging
import threading

logger = logging.getLogger(__name__)


class InMemoryKeyValueStore:
    """프로세스 메모리 기반 보안 저장소 (로컬 실행/테스트용, 재시작 시 소멸)"""

    def __init__(self):
        self._values: dict[str, str] = {}
        self._lock = threading.Lock()

    def store(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def read(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)
