# lib/config_common.py
from pathlib import Path

# === 디버그 프린트 여부 ===
DEBUG_PRINT = False

# ======================================================================
# 시리얼 기본값 (config.json 에 값이 없을 때 사용)
# ======================================================================
ROUTER_PORT = "/dev/ttyUSB0"
ROUTER_BAUD = 9600
ROUTER_BYTESIZE = 8
ROUTER_PARITY = "N"
ROUTER_STOPBITS = 1

ROUTER_MAX_INPUTS = 16
ROUTER_MAX_OUTPUTS = 16
ROUTER_DEFAULT_MODE = "B"

# ======================================================================
# 명령 큐 타이밍/타임아웃
# ======================================================================
COMMAND_TIMEOUT_MS = 2000     # 1회 시도당 응답 대기
MAX_RETRIES        = 3        # 최초 시도 이후 재시도 횟수
COMMAND_GAP_MS     = 50       # 명령 종료 후 다음 명령까지 간격
SIMULATED_DELAY_MS = 100      # devMode 가상 응답 지연

# 연결
RECONNECT_DELAY_MS       = 5000   # 예기치 않은 close 후 재오픈 대기
RECONFIG_CLOSE_TIMEOUT_MS = 3000  # 재설정 시 close 완료 대기 한도

# 호출측(상관관계 레이어)
OUTER_TIMEOUT_MS   = 10_000   # 호출 1건 전체 한도 (재시도 포함)
STATUS_TIMEOUT_MS  = 1000
WORKER_READY_TIMEOUT_MS = 5000

# ======================================================================
# 와이어 포맷
# ======================================================================
TX_EOL = b"\r"
SUCCESS_MARKER = "DONE"
FAILURE_MARKER = "ERROR"
SIMULATED_RESPONSE = "DEV MODE"
RX_BUFFER_MAX = 16 * 1024

# ======================================================================
# 로그
# ======================================================================
APP_NAME = "matrix_router"
LOG_ROOT = Path.cwd() / "Logs" / "ERROR"
CONFIG_PATH = Path.cwd() / "data" / "config.json"
