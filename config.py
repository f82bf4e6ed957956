import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
LOG_FILE = os.getenv("LOG_FILE", os.path.join(BASE_DIR, "engine.log"))
DATA_DIR = os.getenv("DATA_DIR", "")            # 비어 있으면 메모리 저장소
CATALOG_FILE = os.getenv("CATALOG_FILE", "")    # 비어 있으면 샘플 시험

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))

# 세션 저장소 설정
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "5.0"))
STALE_ATTEMPT_TTL = int(os.getenv("STALE_ATTEMPT_TTL", "3600"))   # 시작 전 응시 방치 허용 (초)

# 타이머/자동 저장 설정
AUTOSAVE_INTERVAL_SECONDS = float(os.getenv("AUTOSAVE_INTERVAL_SECONDS", "10"))

# 제출 재시도 (지수 백오프)
SUBMIT_MAX_RETRIES = 3
SUBMIT_BACKOFF_BASE = 0.5

# 부정행위 감지 설정
MAX_VIOLATION_LOG = 500             # 응시당 보관하는 이탈 기록 최대 개수
VIOLATION_DEBOUNCE_SECONDS = 0.0    # 같은 종류 이탈을 합치는 간격 (0이면 끔)

# 레이아웃 설정
PREVIEW_SEED = 12345                # 출제자 미리보기용 고정 시드
