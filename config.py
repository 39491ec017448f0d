import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
LOG_FILE = os.path.join(BASE_DIR, "launch.log")

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "0.0.0.0")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))
SESSION_TTL = int(os.getenv("SESSION_TTL", "3600"))

# 백엔드 API 설정
API_BASE_URL = os.getenv("FREE_TEST_API_URL", "http://localhost:5000/api")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "15.0"))
FREE_TEST_ID = os.getenv("FREE_TEST_ID", "67e79f28f9e4c1541848651a")

# 응시 설정
TEST_TIME_LIMIT_SECONDS = int(os.getenv("TEST_TIME_LIMIT_SECONDS", str(45 * 60)))
TIME_WARNING_SECONDS = int(os.getenv("TIME_WARNING_SECONDS", str(5 * 60)))
DEADLINE_CHECK_INTERVAL = float(os.getenv("DEADLINE_CHECK_INTERVAL", "5"))  # 자동 제출 확인 주기 (초)
QUESTIONS_PER_PAGE = 2      # 유형별 화면당 문제 수
TOP_USERS_LIMIT = 5         # 리더보드 인원
