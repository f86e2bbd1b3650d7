import json
import logging
import sys
import traceback

from mcp.server import Server
from mcp.types import TextContent

from specwiki.application.services import error_classifier
from specwiki.application.use_cases.extract_document import parse_output_format
from specwiki.configuration.container import build_container
from specwiki.domain.errors import PipelineError, redact_secrets

logger = logging.getLogger(__name__)

# 로그에서 마스킹할 민감 필드 (토큰이거나 값이 긴 본문)
_SENSITIVE_FIELDS = {"token", "content", "raw_text", "text", "requirements", "changes", "template_content"}
_ALWAYS_HIDDEN_FIELDS = {"token"}
_PREVIEW_LENGTH = 20


def _mask_arguments(arguments: dict) -> dict:
    """로깅용으로 민감 필드를 마스킹합니다. 토큰은 길이와 무관하게 항상 가립니다."""
    masked = {}
    for key, value in arguments.items():
        if key in _ALWAYS_HIDDEN_FIELDS:
            masked[key] = "***"
        elif key in _SENSITIVE_FIELDS:
            if isinstance(value, str) and len(value) > _PREVIEW_LENGTH:
                masked[key] = f"{value[:_PREVIEW_LENGTH]}... ({len(value)}자)"
            else:
                masked[key] = "***"
        else:
            masked[key] = value
    return masked


def _require(arguments: dict, *names: str) -> None:
    missing = [n for n in names if not arguments.get(n)]
    if missing:
        raise ValueError(f"필수 파라미터 누락: {', '.join(missing)}")


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


def format_pipeline_error(tool_name: str, error: PipelineError, *secrets: str) -> str:
    """PipelineError를 사용자용 Markdown으로 변환합니다. 대화상자/알림 구분과 복구 제안을 포함합니다."""
    severity = "대화상자" if error_classifier.should_show_as_dialog(error) else "알림"
    text = "# ❌ 오류 발생\n\n"
    text += f"**Tool:** {tool_name}\n"
    text += f"**오류 종류:** {error.kind.value} ({severity})\n"
    text += f"**오류 메시지:** {error.message}\n"
    if error.retry_after_seconds is not None:
        text += f"**재시도 가능 시점:** {error.retry_after_seconds}초 후\n"
    if error_classifier.is_retryable(error):
        text += "**재시도:** 가능\n"

    text += "\n## 💡 해결 방법\n\n"
    if error.recovery_action:
        text += f"- {error.recovery_action}\n"
    for suggestion in error_classifier.recovery_suggestions(error):
        text += f"- {suggestion}\n"

    if error.attempts:
        text += "\n## 시도한 추출 전략\n\n"
        for name, reason in error.attempts:
            text += f"- `{name}`: {reason}\n"
    return redact_secrets(text, *secrets)


def _format_publish_run(run) -> str:
    result = run.result
    if result.success:
        text = f"# ✅ {result.operation.display_name} 완료\n\n"
        text += f"{result.detailed_message}\n\n"
        text += "| 항목 | 내용 |\n"
        text += "|------|------|\n"
        text += f"| **페이지 ID** | {result.page_id} |\n"
        text += f"| **제목** | {result.title or '-'} |\n"
        text += f"| **링크** | {result.page_url} |\n"
    else:
        text = f"# ❌ {result.operation.display_name} 실패\n\n"
        text += f"{result.detailed_message}\n"

    if run.backup:
        text += f"\n**백업:** page_id={run.backup.id}, version={run.backup.version}\n"

    text += "\n## 진행 단계\n\n"
    for progress in run.progress:
        mark = "❌" if progress.is_error else "✅"
        text += f"- {mark} `{progress.step}` ({progress.progress:.0%}) {progress.message}\n"
    return text


def register_tools(app: Server) -> None:
    """MCP Tool 핸들러를 서버에 등록합니다."""

    @app.call_tool()
    async def call_tool(name: str, arguments: dict):
        arguments = arguments or {}
        try:
            container = build_container()
            logger.info("=" * 60)
            logger.info("🔧 Tool 호출: %s", name)
            logger.info("인자: %s", _mask_arguments(arguments))
            logger.info("환경: %s", container.settings.app_env)
            logger.info("=" * 60)

            if name == "configure_wiki_connection":
                _require(arguments, "base_url", "email")
                result = await container.configure_wiki_connection_use_case.execute(
                    base_url=arguments["base_url"],
                    email=arguments["email"],
                    token=arguments.get("token") or None,
                    enabled=arguments.get("enabled", True),
                    verify=arguments.get("verify", True),
                )
                logger.info("✅ Tool 실행 완료: 연결 설정 저장 (verified=%s)", result["verified"])

                text = "# ✅ Confluence 연결 설정 저장\n\n"
                text += "| 항목 | 내용 |\n"
                text += "|------|------|\n"
                text += f"| **Base URL** | {result['base_url']} |\n"
                text += f"| **API URL** | {result['api_base_url']} |\n"
                text += f"| **이메일** | {result['email']} |\n"
                text += f"| **Cloud** | {'예' if result['is_cloud'] else '아니오'} |\n"
                text += f"| **활성화** | {'예' if result['enabled'] else '아니오'} |\n"
                text += f"| **연결 확인** | {'✅ 성공' if result['verified'] else '미확인'} |\n"
                if result.get("verify_error"):
                    text += f"\n⚠️ 연결 테스트 실패 ({result['verify_error_kind']}): {result['verify_error']}\n"
                return _text(text)

            if name == "test_wiki_connection":
                result = await container.test_wiki_connection_use_case.execute()
                logger.info("✅ Tool 실행 완료: 연결 테스트 성공")
                text = "# ✅ Confluence 연결 성공\n\n"
                text += f"- **Base URL:** {result['base_url']}\n"
                text += f"- **API URL:** {result['api_base_url']}\n"
                text += f"- **확인 시각:** {result['last_validated']}\n"
                return _text(text)

            if name == "resolve_wiki_links":
                _require(arguments, "text")
                config = container.config_repo.load()
                if not config.is_configuration_complete:
                    return _text(
                        "# ⚠️ Confluence 연결 설정이 필요합니다\n\n"
                        "`configure_wiki_connection`으로 Base URL, 이메일, API 토큰을 먼저 설정해주세요."
                    )
                processed, links = await container.resolve_wiki_links_use_case.process_text(
                    arguments["text"], config.sanitized_base_url,
                )
                logger.info("✅ Tool 실행 완료: 링크 %d건 처리", len(links))

                if not links:
                    return _text("# 🔗 Wiki 링크 없음\n\n텍스트에서 설정된 Confluence 링크를 찾지 못했습니다.\n\n" + processed)

                text = f"# 🔗 Wiki 링크 해석 결과 ({len(links)}건)\n\n"
                text += "| URL | 페이지 ID | 결과 |\n"
                text += "|-----|-----------|------|\n"
                for link in links:
                    status = f"✅ {len(link.extracted_content)}자" if link.is_valid else f"❌ {link.error_message}"
                    text += f"| {link.original_url} | {link.page_id or '-'} | {status} |\n"
                text += "\n## 처리된 텍스트\n\n"
                text += processed
                return _text(text)

            if name == "build_generation_prompt":
                _require(arguments, "requirements")
                output_format = parse_output_format(arguments.get("output_format", "markdown"))
                prompt = container.prompt_builder.build(
                    requirements=arguments["requirements"],
                    output_format=output_format,
                    template_content=arguments.get("template_content", ""),
                    changes=arguments.get("changes", ""),
                )
                logger.info("✅ Tool 실행 완료: 프롬프트 생성 (format=%s)", output_format.value)
                return _text(json.dumps(prompt, ensure_ascii=False, indent=2))

            if name == "extract_document":
                _require(arguments, "raw_text")
                document = container.extract_document_use_case.execute(
                    raw_text=arguments["raw_text"],
                    output_format=arguments.get("output_format", "markdown"),
                )
                logger.info(
                    "✅ Tool 실행 완료: 문서 추출 (strategy=%s, %d자)",
                    document.strategy, len(document.content),
                )
                text = f"<!-- format={document.format.value} strategy={document.strategy} -->\n"
                text += document.content
                return _text(text)

            if name == "publish_document":
                _require(arguments, "content")
                content_format = parse_output_format(arguments.get("content_format", "markdown"))
                use_case = container.publish_document_use_case
                if arguments.get("page_url"):
                    run = await use_case.update_run(
                        page_url=arguments["page_url"],
                        content=arguments["content"],
                        content_format=content_format,
                        title=arguments.get("title") or None,
                    )
                else:
                    _require(arguments, "parent_page_url", "title")
                    run = await use_case.create_run(
                        parent_page_url=arguments["parent_page_url"],
                        title=arguments["title"],
                        content=arguments["content"],
                        content_format=content_format,
                    )
                logger.info("✅ Tool 실행 완료: %s", run.result.status_message)
                return _text(_format_publish_run(run))

            if name == "get_link_cache_stats":
                stats = container.resolve_wiki_links_use_case.cache_stats()
                text = "# 📦 링크 캐시 현황\n\n"
                text += f"- **전체:** {stats['total']}건\n"
                text += f"- **유효:** {stats['fresh']}건\n"
                text += f"- **만료:** {stats['stale']}건\n"
                return _text(text)

            if name == "clear_link_cache":
                container.resolve_wiki_links_use_case.clear_cache()
                logger.info("✅ Tool 실행 완료: 링크 캐시 초기화")
                return _text("# ✅ 링크 캐시를 비웠습니다")

            if name == "reload_prompt_templates":
                result = container.reload_templates_use_case.execute()
                logger.info("✅ Tool 실행 완료: 템플릿 리로드 %s", result["formats"])
                text = "# ✅ 프롬프트 템플릿 리로드 완료\n\n"
                for fmt, length in result["body_lengths"].items():
                    text += f"- **{fmt}:** {length}자\n"
                text += f"- **user_prompt:** {result['user_prompt_length']}자\n"
                return _text(text)

            raise ValueError(f"알 수 없는 tool: {name}")

        except PipelineError as e:
            secrets = [arguments["token"]] if arguments.get("token") else []
            logger.error("=" * 60)
            logger.error("❌ Tool 실행 실패!")
            logger.error(error_classifier.format_for_logging(e, f"tool={name}", *secrets))
            logger.error("=" * 60)
            return _text(format_pipeline_error(name, e, *secrets))

        except Exception as e:
            secrets = [arguments["token"]] if arguments.get("token") else []
            logger.error("=" * 60)
            logger.error("❌ Tool 실행 실패!")
            logger.error("Tool: %s", name)
            logger.error("오류 타입: %s", type(e).__name__)
            logger.error("오류 메시지: %s", redact_secrets(str(e), *secrets))
            logger.error("=" * 60)
            if not secrets:
                traceback.print_exc(file=sys.stderr)

            # MCP 표준 형식으로 에러 메시지 반환
            error_message = f"""# ❌ 오류 발생

**Tool:** {name}
**오류 타입:** {type(e).__name__}
**오류 메시지:** {redact_secrets(str(e), *secrets)}

자세한 내용은 서버 로그를 확인하세요.
"""
            return _text(error_message)

    @app.list_tools()
    async def list_tools():
        from mcp.types import Tool

        return [
            Tool(
                name="configure_wiki_connection",
                description="""Confluence 연결 정보를 저장합니다.

API 토큰은 시스템 키체인에 암호화하여 보관하고, 설정 파일에는 참조값만 기록합니다.
이미 토큰이 저장되어 있으면 token을 생략할 수 있습니다. verify=true(기본)면 저장 후 연결을 테스트합니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "base_url": {
                            "type": "string",
                            "description": "Confluence 주소 (예: 'https://your-domain.atlassian.net')",
                        },
                        "email": {
                            "type": "string",
                            "description": "Confluence 계정 이메일",
                        },
                        "token": {
                            "type": "string",
                            "description": "Confluence API 토큰 (생략 시 기존 토큰 유지)",
                        },
                        "enabled": {
                            "type": "boolean",
                            "description": "Confluence 연동 활성화 여부 (기본 true)",
                        },
                        "verify": {
                            "type": "boolean",
                            "description": "저장 후 연결 테스트 여부 (기본 true)",
                        },
                    },
                    "required": ["base_url", "email"],
                },
            ),
            Tool(
                name="test_wiki_connection",
                description="""저장된 설정으로 Confluence 연결과 인증을 확인합니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {},
                },
            ),
            Tool(
                name="resolve_wiki_links",
                description="""텍스트 안의 Confluence 링크를 찾아 페이지 내용을 가져오고, 각 링크를 '@conf-cnt <내용>@' 마커로 치환합니다.

해석에 실패한 링크는 원래 URL을 그대로 남깁니다. 결과는 30분간 캐시됩니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "text": {
                            "type": "string",
                            "description": "Wiki 링크가 포함된 요구사항 텍스트",
                        },
                    },
                    "required": ["text"],
                },
            ),
            Tool(
                name="build_generation_prompt",
                description="""명세서 생성을 위한 LLM 시스템/사용자 프롬프트를 만듭니다.

프롬프트에는 응답을 @@@START@@@ / @@@END@@@ 마커로 감싸라는 지시가 포함됩니다.
Wiki 링크가 있다면 resolve_wiki_links로 먼저 치환한 텍스트를 넘기세요.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "requirements": {
                            "type": "string",
                            "description": "요구사항 텍스트 (10자 이상)",
                        },
                        "output_format": {
                            "type": "string",
                            "enum": ["markdown", "confluence"],
                            "description": "생성할 문서 형식 (기본 markdown)",
                        },
                        "template_content": {
                            "type": "string",
                            "description": "문서 템플릿 (생략 시 기본 구조)",
                        },
                        "changes": {
                            "type": "string",
                            "description": "변경/보완 사항",
                        },
                    },
                    "required": ["requirements"],
                },
            ),
            Tool(
                name="extract_document",
                description="""LLM 응답 원문에서 명세 문서를 추출하고 검증합니다.

마커 추출 → 느슨한 마커 → 형식 교차 변환 → 평문 복구 순서로 시도하며, 모두 실패하면 시도 내역을 담은 오류를 반환합니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "raw_text": {
                            "type": "string",
                            "description": "LLM 응답 원문",
                        },
                        "output_format": {
                            "type": "string",
                            "enum": ["markdown", "confluence"],
                            "description": "기대하는 문서 형식 (기본 markdown)",
                        },
                    },
                    "required": ["raw_text"],
                },
            ),
            Tool(
                name="publish_document",
                description="""문서를 Confluence에 게시합니다.

- page_url이 있으면 기존 페이지를 수정합니다 (수정 전 백업, 버전 +1).
- 없으면 parent_page_url 아래에 title로 새 페이지를 만듭니다.
Markdown 문서는 Confluence Storage Format으로 변환하여 게시합니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "content": {
                            "type": "string",
                            "description": "게시할 문서 본문",
                        },
                        "content_format": {
                            "type": "string",
                            "enum": ["markdown", "confluence"],
                            "description": "본문 형식 (기본 markdown)",
                        },
                        "title": {
                            "type": "string",
                            "description": "페이지 제목 (생성 시 필수, 수정 시 생략하면 기존 제목 유지)",
                        },
                        "parent_page_url": {
                            "type": "string",
                            "description": "새 페이지를 만들 상위 페이지 URL",
                        },
                        "page_url": {
                            "type": "string",
                            "description": "수정할 페이지 URL",
                        },
                    },
                    "required": ["content"],
                },
            ),
            Tool(
                name="get_link_cache_stats",
                description="""Wiki 링크 캐시의 전체/유효/만료 건수를 조회합니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {},
                },
            ),
            Tool(
                name="clear_link_cache",
                description="""Wiki 링크 캐시를 모두 비웁니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {},
                },
            ),
            Tool(
                name="reload_prompt_templates",
                description="""프롬프트 템플릿 YAML 파일을 핫 리로드합니다. 서버 재시작 없이 config/prompt_templates.yaml 변경 반영.""",
                inputSchema={
                    "type": "object",
                    "properties": {},
                },
            ),
        ]
