"""
services/session_store.py — 응시 상태 저장소

응시 ID로 조회하는 키-값 저장소. 단일 응시에 대해 쓰기 후 읽기 일관성을 보장한다.
load()/save()는 깊은 복사본을 주고받으므로 호출자끼리 같은 객체를 공유하지 않는다.

구현:
  - MemorySessionStore   : 프로세스 메모리 (테스트/단일 프로세스용)
  - JsonFileSessionStore : 디렉터리에 응시별 JSON 파일 (재시작 후 재개용)

모든 작업은 STORE_TIMEOUT_SECONDS 안에 끝나거나 StorageError로 실패한다.
"""

import logging
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from config import STORE_TIMEOUT_SECONDS
from exam_engine.errors import StorageError
from exam_engine.models.session_state import Attempt, AttemptStatus

logger = logging.getLogger(__name__)

# 시작 전 상태로 방치된 응시 (정리 대상)
_NOT_STARTED = (
    AttemptStatus.CREATED,
    AttemptStatus.PREFLIGHT_PENDING,
    AttemptStatus.CANDIDATE_PENDING,
)


class SessionStore(ABC):
    """세션 저장소 계약."""

    def __init__(self, timeout: float = STORE_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._lock = threading.Lock()

    @contextmanager
    def _locked(self):
        if not self._lock.acquire(timeout=self.timeout):
            raise StorageError(f"세션 저장소 응답 시간 초과 ({self.timeout}초)")
        try:
            yield
        finally:
            self._lock.release()

    @abstractmethod
    def load(self, attempt_id: str) -> Optional[Attempt]:
        """응시 조회. 없으면 None."""

    @abstractmethod
    def save(self, attempt: Attempt) -> None:
        """응시 저장 (upsert). 실패 시 StorageError."""

    @abstractmethod
    def list_attempts(self, version_id: Optional[str] = None,
                      status: Optional[AttemptStatus] = None) -> List[Attempt]:
        """조건에 맞는 응시 목록 (생성 시각 순)."""

    @abstractmethod
    def delete(self, attempt_id: str) -> bool:
        """응시 삭제. 삭제했으면 True."""

    def cleanup_stale(self, max_age_seconds: float, now: Optional[float] = None) -> int:
        """
        시작하지 않은 채 max_age_seconds 넘게 방치된 응시를 정리. 제거된 수 반환.
        진행 중이거나 제출된 응시는 건드리지 않는다.
        """
        now = time.time() if now is None else now
        removed = 0
        for attempt in self.list_attempts():
            if attempt.status in _NOT_STARTED and now - attempt.created_at > max_age_seconds:
                if self.delete(attempt.id):
                    removed += 1
        return removed


def _filter(attempts: Iterable[Attempt], version_id: Optional[str],
            status: Optional[AttemptStatus]) -> List[Attempt]:
    result = [
        a for a in attempts
        if (version_id is None or a.version_id == version_id)
        and (status is None or a.status == status)
    ]
    result.sort(key=lambda a: a.created_at)
    return result


class MemorySessionStore(SessionStore):
    """프로세스 메모리 저장소."""

    def __init__(self, timeout: float = STORE_TIMEOUT_SECONDS):
        super().__init__(timeout)
        self._attempts: Dict[str, Attempt] = {}

    def load(self, attempt_id: str) -> Optional[Attempt]:
        with self._locked():
            attempt = self._attempts.get(attempt_id)
            return attempt.model_copy(deep=True) if attempt is not None else None

    def save(self, attempt: Attempt) -> None:
        with self._locked():
            self._attempts[attempt.id] = attempt.model_copy(deep=True)

    def list_attempts(self, version_id: Optional[str] = None,
                      status: Optional[AttemptStatus] = None) -> List[Attempt]:
        with self._locked():
            snapshot = [a.model_copy(deep=True) for a in self._attempts.values()]
        return _filter(snapshot, version_id, status)

    def delete(self, attempt_id: str) -> bool:
        with self._locked():
            return self._attempts.pop(attempt_id, None) is not None


class JsonFileSessionStore(SessionStore):
    """
    응시별 JSON 파일 저장소.

    파일은 임시 파일에 쓴 뒤 os.replace로 교체하므로
    프로세스가 쓰기 도중 죽어도 반쯤 쓰인 파일이 남지 않는다.
    """

    def __init__(self, directory: str, timeout: float = STORE_TIMEOUT_SECONDS):
        super().__init__(timeout)
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, attempt_id: str) -> str:
        # 경로 조작 방지
        safe_id = os.path.basename(attempt_id)
        return os.path.join(self.directory, f"{safe_id}.json")

    def _read(self, path: str) -> Optional[Attempt]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return Attempt.model_validate_json(f.read())
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"응시 파일 읽기 실패: {path} - {e}") from e
        except ValidationError as e:
            raise StorageError(f"손상된 응시 파일: {path} - {e}") from e

    def load(self, attempt_id: str) -> Optional[Attempt]:
        with self._locked():
            return self._read(self._path(attempt_id))

    def save(self, attempt: Attempt) -> None:
        path = self._path(attempt.id)
        with self._locked():
            try:
                fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            except OSError as e:
                raise StorageError(f"응시 파일 쓰기 실패: {path} - {e}") from e
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(attempt.model_dump_json())
                os.replace(tmp_path, path)
            except OSError as e:
                # 실패한 쓰기의 임시 파일을 남기지 않는다
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass
                raise StorageError(f"응시 파일 쓰기 실패: {path} - {e}") from e

    def list_attempts(self, version_id: Optional[str] = None,
                      status: Optional[AttemptStatus] = None) -> List[Attempt]:
        attempts: List[Attempt] = []
        with self._locked():
            try:
                names = os.listdir(self.directory)
            except OSError as e:
                raise StorageError(f"저장소 디렉터리 조회 실패: {self.directory} - {e}") from e
            for name in names:
                if not name.endswith(".json"):
                    continue
                try:
                    attempt = self._read(os.path.join(self.directory, name))
                except StorageError as e:
                    logger.warning(f"응시 파일 건너뜀: {e}")
                    continue
                if attempt is not None:
                    attempts.append(attempt)
        return _filter(attempts, version_id, status)

    def delete(self, attempt_id: str) -> bool:
        with self._locked():
            try:
                os.remove(self._path(attempt_id))
                return True
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageError(f"응시 파일 삭제 실패: {attempt_id} - {e}") from e
