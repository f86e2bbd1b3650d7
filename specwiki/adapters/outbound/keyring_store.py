import logging

import keyring
import keyring.errors

logger = logging.getLogger(__name__)

DEFAULT_SERVICE = "specwiki"


class KeyringStore:
    """시스템 키체인(macOS Keychain, GNOME Keyring, Windows Credential Locker) 기반 보안 저장소"""

    def __init__(self, service: str = DEFAULT_SERVICE):
        self._service = service

    def store(self, key: str, value: str) -> None:
        keyring.set_password(self._service, key, value)
        logger.info("키체인 저장: service=%s, key=%s", self._service, key)

    def read(self, key: str) -> str | None:
        return keyring.get_password(self._service, key)

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self._service, key)
            logger.info("키체인 삭제: service=%s, key=%s", self._service, key)
        except keyring.errors.PasswordDeleteError:
            logger.info("키체인에 없는 항목 삭제 요청 무시: key=%s", key)
