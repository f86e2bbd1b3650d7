from dataclasses import dataclass
from functools import lru_cache

from specwiki.adapters.outbound.in_memory_key_value_store import InMemoryKeyValueStore
from specwiki.adapters.outbound.in_memory_link_cache import InMemoryLinkCache
from specwiki.adapters.outbound.json_connection_config_repository import JsonConnectionConfigRepository
from specwiki.adapters.outbound.keyring_store import KeyringStore
from specwiki.adapters.outbound.wiki_adapter import WikiAdapter
from specwiki.adapters.outbound.yaml_template_repository import YamlTemplateRepository
from specwiki.application.services.fallback_processor import FallbackProcessor
from specwiki.application.services.format_converter import FormatConverter
from specwiki.application.services.prompt_builder import PromptBuilder
from specwiki.application.services.secure_credential_store import SecureCredentialStore
from specwiki.application.use_cases.configure_wiki_connection import ConfigureWikiConnectionUseCase
from specwiki.application.use_cases.extract_document import ExtractDocumentUseCase
from specwiki.application.use_cases.publish_document import PublishDocumentUseCase
from specwiki.application.use_cases.reload_templates import ReloadTemplatesUseCase
from specwiki.application.use_cases.resolve_wiki_links import ResolveWikiLinksUseCase
from specwiki.application.use_cases.test_wiki_connection import TestWikiConnectionUseCase
from specwiki.configuration.settings import Settings, build_settings


@dataclass(frozen=True)
class Container:
    settings: Settings
    config_repo: JsonConnectionConfigRepository
    configure_wiki_connection_use_case: ConfigureWikiConnectionUseCase
    test_wiki_connection_use_case: TestWikiConnectionUseCase
    resolve_wiki_links_use_case: ResolveWikiLinksUseCase
    extract_document_use_case: ExtractDocumentUseCase
    publish_document_use_case: PublishDocumentUseCase
    reload_templates_use_case: ReloadTemplatesUseCase
    prompt_builder: PromptBuilder


@lru_cache(maxsize=1)
def build_container() -> Container:
    settings = build_settings()

    # 보안 저장소: 시스템 키체인 또는 프로세스 메모리
    if settings.secure_store_backend == "memory":
        secure_backend = InMemoryKeyValueStore()
    else:
        secure_backend = KeyringStore(service=settings.keyring_service)
    credentials = SecureCredentialStore(backend=secure_backend)

    config_repo = JsonConnectionConfigRepository(json_path=settings.wiki_config_path)

    # 설정은 요청마다 다시 읽어 configure 직후에도 바로 반영
    wiki_adapter = WikiAdapter(
        config_source=config_repo.load,
        credentials=credentials,
        timeout=float(settings.http_timeout_seconds),
    )

    link_cache = InMemoryLinkCache(
        ttl_minutes=settings.link_cache_ttl_minutes,
        max_entries=settings.link_cache_max_entries,
    )

    template_repo = YamlTemplateRepository(yaml_path=settings.prompt_template_path)
    prompt_builder = PromptBuilder(template_repo=template_repo)
    converter = FormatConverter()

    test_wiki_connection_use_case = TestWikiConnectionUseCase(
        wiki_port=wiki_adapter,
        config_repo=config_repo,
    )

    configure_wiki_connection_use_case = ConfigureWikiConnectionUseCase(
        config_repo=config_repo,
        credentials=credentials,
        connection_tester=test_wiki_connection_use_case,
    )

    resolve_wiki_links_use_case = ResolveWikiLinksUseCase(
        wiki_port=wiki_adapter,
        link_cache=link_cache,
        max_concurrent_requests=settings.link_max_concurrent_requests,
    )

    extract_document_use_case = ExtractDocumentUseCase(
        fallback_processor=FallbackProcessor(converter=converter),
    )

    publish_document_use_case = PublishDocumentUseCase(
        wiki_port=wiki_adapter,
        config_source=config_repo.load,
        credentials=credentials,
        converter=converter,
    )

    # 템플릿 핫 리로드
    reload_templates_use_case = ReloadTemplatesUseCase(
        template_repo=template_repo,
    )

    return Container(
        settings=settings,
        config_repo=config_repo,
        configure_wiki_connection_use_case=configure_wiki_connection_use_case,
        test_wiki_connection_use_case=test_wiki_connection_use_case,
        resolve_wiki_links_use_case=resolve_wiki_links_use_case,
        extract_document_use_case=extract_document_use_case,
        publish_document_use_case=publish_document_use_case,
        reload_templates_use_case=reload_templates_use_case,
        prompt_builder=prompt_builder,
    )


def clear_container() -> None:
    build_container.cache_clear()
