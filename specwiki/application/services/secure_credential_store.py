import base64
import logging
import os
import re
import time

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from specwiki.application.ports.secure_key_value_store_port import SecureKeyValueStorePort
from specwiki.application.services.input_sanitizer import validate_token
from specwiki.domain.errors import ErrorKind, PipelineError, validation_error

logger = logging.getLogger(__name__)

REF_PREFIX = "secure_"
MASTER_KEY_NAME = "specwiki_master_key"

_REF_PATTERN = re.compile(r"^secure_\d+$")
_NONCE_SIZE = 12


class SecureCredentialStore:
    """API 토큰을 AES-256-GCM으로 암호화해 보안 저장소에 보관합니다.

    설정 파일에는 불투명한 참조값(secure_<밀리초>)만 남고, 실제 토큰은 저장소 안에만 존재합니다.
    get()은 fail-closed: 저장소/복호화 오류는 모두 validation 오류로 변환됩니다.
    """

    def __init__(self, backend: SecureKeyValueStorePort, master_key_name: str = MASTER_KEY_NAME):
        self._backend = backend
        self._master_key_name = master_key_name

    def store(self, token: str) -> str:
        """토큰을 암호화하여 저장하고 참조값을 반환합니다."""
        token = validate_token(token)
        ref = self._new_ref()
        try:
            key = self._load_key(create=True)
            nonce = os.urandom(_NONCE_SIZE)
            # 참조값을 associated data로 묶어 다른 키로 옮겨진 암호문은 복호화되지 않게 함
            ct = AESGCM(key).encrypt(nonce, token.encode("utf-8"), ref.encode("utf-8"))
            self._backend.store(ref, base64.urlsafe_b64encode(nonce + ct).decode("utf-8"))
        except PipelineError:
            raise
        except Exception as e:
            logger.error("❌ 보안 저장소 토큰 저장 실패: %s", type(e).__name__)
            raise PipelineError(
                ErrorKind.VALIDATION,
                "API 토큰을 보안 저장소에 저장하지 못했습니다",
                technical_details=type(e).__name__,
                recovery_action="시스템 키체인 접근 권한을 확인하세요",
            ) from e
        logger.info("보안 토큰 저장 완료")
        return ref

    def get(self, ref: str) -> str | None:
        """참조값으로 토큰을 조회합니다. 없는 참조는 None을 반환합니다."""
        if not ref or not _REF_PATTERN.match(ref):
            raise validation_error(
                "보안 토큰 참조 형식이 올바르지 않습니다",
                field="tokenRef",
                recovery_action="Confluence 연결 설정에서 API 토큰을 다시 입력하세요",
            )
        try:
            encrypted = self._backend.read(ref)
            if encrypted is None:
                return None
            key = self._load_key(create=False)
            if key is None:
                raise ValueError("master key missing")
            raw = base64.urlsafe_b64decode(encrypted.encode("utf-8"))
            nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
            return AESGCM(key).decrypt(nonce, ct, ref.encode("utf-8")).decode("utf-8")
        except Exception as e:
            logger.error("❌ 보안 토큰 조회 실패: %s", type(e).__name__)
            raise PipelineError(
                ErrorKind.VALIDATION,
                "저장된 API 토큰을 읽을 수 없습니다",
                technical_details=type(e).__name__,
                recovery_action="Confluence 연결 설정에서 API 토큰을 다시 입력하세요",
            ) from e

    def invalidate(self, ref: str) -> None:
        if not ref:
            return
        try:
            self._backend.delete(ref)
        except Exception as e:
            logger.warning("보안 토큰 삭제 실패: %s", type(e).__name__)
            raise PipelineError(
                ErrorKind.VALIDATION,
                "저장된 API 토큰을 삭제하지 못했습니다",
                technical_details=type(e).__name__,
            ) from e
        logger.info("보안 토큰 무효화 완료")

    def rotate(self, old_ref: str, new_token: str) -> str:
        """새 토큰을 저장한 뒤 이전 참조를 무효화합니다."""
        new_ref = self.store(new_token)
        if old_ref and old_ref != new_ref:
            self.invalidate(old_ref)
        return new_ref

    def _new_ref(self) -> str:
        millis = int(time.time() * 1000)
        # 같은 밀리초에 여러 번 저장하면 다음 빈 값으로 밀어냄
        while self._backend.read(f"{REF_PREFIX}{millis}") is not None:
            millis += 1
        return f"{REF_PREFIX}{millis}"

    def _load_key(self, create: bool) -> bytes | None:
        encoded = self._backend.read(self._master_key_name)
        if encoded is None:
            if not create:
                return None
            key = AESGCM.generate_key(bit_length=256)
            self._backend.store(self._master_key_name, base64.urlsafe_b64encode(key).decode("utf-8"))
            logger.info("보안 저장소 마스터 키 생성")
            return key
        key = base64.urlsafe_b64decode(encoded.encode("utf-8"))
        if len(key) != 32:
            raise ValueError("AES-256-GCM key must be 32 bytes")
        return key
