import asyncio
import logging
import os
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

from mcp.server import Server
from mcp.server.stdio import stdio_server

from specwiki.adapters.inbound.mcp.tools import register_tools
from specwiki.configuration.container import build_container, clear_container


def setup_logging():
    """로깅 설정: stderr와 파일 두 곳에 로그 출력"""
    # 로그 디렉토리 생성 (LOG_DIR 미지정 시 프로젝트 루트의 logs)
    log_dir = Path(__file__).parent.parent / os.getenv("LOG_DIR", "logs")
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "specwiki.log"

    formatter = logging.Formatter(
        '%(asctime)s [%(name)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    # 1. stderr 핸들러 (MCP 호스트 로그에 표시)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    root_logger.addHandler(stderr_handler)

    # 2. 파일 핸들러 (최대 10MB, 5개 백업)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # httpx 요청 로그에는 URL만 남도록 INFO 이하 생략
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logging.getLogger(__name__)


logger = setup_logging()


async def main() -> None:
    try:
        logger.info("=" * 60)
        logger.info("MCP 서버 초기화 시작")

        container = build_container()
        settings = container.settings
        logger.info("✅ Container 빌드 완료")
        logger.info("서버 이름: %s", settings.server_name)
        logger.info("환경: %s", settings.app_env)
        logger.info("연결 설정 파일: %s", settings.wiki_config_path)
        logger.info("프롬프트 템플릿: %s", settings.prompt_template_path)
        logger.info("보안 저장소: %s", settings.secure_store_backend)

        app = Server(settings.server_name)
        register_tools(app)
        logger.info("✅ MCP Tools 등록 완료")

        logger.info("MCP 서버 시작 중...")
        logger.info("=" * 60)

        try:
            async with stdio_server() as (read_stream, write_stream):
                await app.run(read_stream, write_stream, app.create_initialization_options())
        finally:
            if settings.app_env == "local":
                clear_container()
            logger.info("MCP 서버 종료")

    except Exception as e:
        logger.error("=" * 60)
        logger.error("MCP 서버 시작 실패!")
        logger.error("오류 타입: %s", type(e).__name__)
        logger.error("오류 메시지: %s", str(e))
        logger.error("=" * 60)
        traceback.print_exc(file=sys.stderr)
        raise


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
