"""
services/test_catalog.py — 시험 카탈로그 읽기 인터페이스

시험/문항 작성과 보관은 외부 시스템의 몫이다. 세션 엔진은 이 계약으로
TestVersion을 읽기만 하며, 예외적으로 Short 문항 정답 키 정정만 요청한다.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Union

from pydantic import ValidationError

from exam_engine.errors import InputValidationError, NotFoundError
from exam_engine.models.question_model import QuestionType, TestVersion

logger = logging.getLogger(__name__)


class TestCatalog(ABC):
    __test__ = False  # pytest 수집 대상 아님

    @abstractmethod
    def get_test_version(self, version_id: str) -> TestVersion:
        """버전 조회. 없으면 NotFoundError."""

    @abstractmethod
    def has_test(self, test_id: str) -> bool:
        """시험 존재 여부."""

    @abstractmethod
    def amend_short_answer(self, version_id: str, question_id: str,
                           new_answer: Union[str, List[str]]) -> TestVersion:
        """Short 문항 정답(문자열 또는 허용 정답 리스트) 정정. 정정된 새 버전 객체를 반환한다."""


class InMemoryTestCatalog(TestCatalog):
    """메모리 카탈로그. 샘플 시험과 테스트에서 사용."""

    def __init__(self, versions: Iterable[TestVersion] = ()):
        self._lock = threading.Lock()
        self._versions: Dict[str, TestVersion] = {}
        for v in versions:
            self.add_version(v)

    def add_version(self, version: TestVersion) -> None:
        with self._lock:
            self._versions[version.id] = version

    def list_versions(self) -> List[TestVersion]:
        with self._lock:
            return list(self._versions.values())

    def get_test_version(self, version_id: str) -> TestVersion:
        with self._lock:
            version = self._versions.get(version_id)
        if version is None:
            raise NotFoundError(f"시험 버전을 찾을 수 없습니다: {version_id}")
        return version

    def has_test(self, test_id: str) -> bool:
        with self._lock:
            return any(v.test_id == test_id for v in self._versions.values())

    def amend_short_answer(self, version_id: str, question_id: str,
                           new_answer: Union[str, List[str]]) -> TestVersion:
        with self._lock:
            version = self._versions.get(version_id)
            if version is None:
                raise NotFoundError(f"시험 버전을 찾을 수 없습니다: {version_id}")
            question = version.find_question(question_id)
            if question is None:
                raise NotFoundError(f"문항을 찾을 수 없습니다: {question_id}")
            if question.type != QuestionType.SHORT:
                raise InputValidationError(f"Short 문항만 정답을 정정할 수 있습니다: {question_id}")

            # 검증기를 다시 거치도록 dict → 모델로 재구성
            data = version.model_dump()
            for section in data["sections"]:
                for q in section["questions"]:
                    if q["id"] == question_id:
                        q["answer"] = new_answer
            try:
                amended = TestVersion.model_validate(data)
            except ValidationError as e:
                raise InputValidationError(f"정답 정정 값이 올바르지 않습니다: {e}") from e

            self._versions[version_id] = amended

        logger.info(f"정답 키 정정: version={version_id} question={question_id}")
        return amended


def load_catalog_file(path: str) -> InMemoryTestCatalog:
    """
    JSON 파일에서 카탈로그를 읽는다. 형식: [TestVersion, ...]
    형식 오류는 로딩 시점에 ValueError로 드러난다.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise ValueError(f"카탈로그 파일은 버전 리스트여야 합니다: {path}")
    try:
        versions = [TestVersion.model_validate(item) for item in raw]
    except ValidationError as e:
        raise ValueError(f"카탈로그 파일 검증 실패: {path} - {e}") from e
    logger.info(f"카탈로그 로드: {len(versions)}개 버전 ({path})")
    return InMemoryTestCatalog(versions)
