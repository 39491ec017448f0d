"""
main.py — 무료 테스트 서버 진입점
"""

import logging
import sys

import uvicorn

from config import DEFAULT_HOST, DEFAULT_PORT, LOG_FILE

# ── 로깅 설정 ────────────────────────────────────────────────────────────────

def configure_logging() -> logging.Logger:
    try:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            handlers=[
                logging.FileHandler(LOG_FILE, encoding='utf-8'),
                logging.StreamHandler(sys.stdout)
            ]
        )
    except PermissionError:
        # 로그 파일 점유 시 콘솔 출력만 사용
        logging.basicConfig(level=logging.INFO)
    return logging.getLogger(__name__)


# ── 메인 실행 ────────────────────────────────────────────────────────────────

def main() -> None:
    logger = configure_logging()
    logger.info("=== Free English Test Server Started ===")

    from api.app import create_app
    app = create_app()
    logger.info(f"Uvicorn 서버 시작 - {DEFAULT_HOST}:{DEFAULT_PORT}")
    uvicorn.run(app, host=DEFAULT_HOST, port=DEFAULT_PORT, log_level="info")


if __name__ == "__main__":
    main()
