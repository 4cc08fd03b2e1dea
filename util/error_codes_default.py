# util/error_codes_default.py
# -*- coding: utf-8 -*-
# 코드 → 원인/해결방법. 매뉴얼 표와 같은 순서로 유지.
DEFAULT_CODES = {
    "E110": {
        "cause": "Handler crash",
        "fix": "서버 로그의 스택트레이스를 확인하세요.",
    },
    "E201": {
        "cause": "Serial port not connected",
        "fix": "라우터 전원과 시리얼 케이블, 설정의 serialPort 값을 확인하세요.",
    },
    "E202": {
        "cause": "Command timeout",
        "fix": "라우터가 응답하지 않습니다. baudRate 설정과 라우터 상태를 확인하세요.",
    },
    "E203": {
        "cause": "Router returned ERROR",
        "fix": "입력/출력 번호가 라우터 구성 범위 안인지 확인하세요.",
    },
    "E204": {
        "cause": "Serial transport error",
        "fix": "포트가 다른 프로그램에서 사용 중인지 확인하고 재연결을 기다리세요.",
    },
    "E205": {
        "cause": "Command timeout at server level",
        "fix": "명령 큐가 밀려 있습니다. 잠시 후 다시 시도하세요.",
    },
    "E210": {
        "cause": "Missing outputId or inputId",
        "fix": "출력/입력 번호를 1 이상의 정수로 지정하세요.",
    },
}
