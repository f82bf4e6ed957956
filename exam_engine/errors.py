"""
errors.py

세션 엔진 오류 종류.
경계(API 라우트)에서 HTTP 상태 코드로 변환된다.
"""


class ExamEngineError(Exception):
    """세션 엔진 오류의 공통 부모."""


class NotFoundError(ExamEngineError):
    """존재하지 않는 시험/버전/응시."""


class InvalidTransitionError(ExamEngineError):
    """현재 상태에서 허용되지 않는 작업 (예: 중단된 응시를 제출)."""


class InputValidationError(ExamEngineError):
    """응시자 정보 누락, 잘못된 답안 페이로드, 범위를 벗어난 점수."""


class StorageError(ExamEngineError):
    """세션 저장소 사용 불가 또는 시간 초과."""


class AlreadySubmittedError(ExamEngineError):
    """
    동시 제출 경합을 끊기 위한 내부 신호.
    사용자에게 노출되지 않고 기존 채점 결과로 해소된다.
    """

    def __init__(self, attempt_id: str):
        super().__init__(f"이미 제출된 응시입니다: {attempt_id}")
        self.attempt_id = attempt_id
