"""
api/engine.py — 세션 엔진 구성 요소 조립

카탈로그 + 저장소 + 컨트롤러 + 타이머 + 감시기를 한 묶음으로 만든다.
설정(config)에 따라 파일 카탈로그/JSON 저장소를 쓰고, 없으면 샘플 시험과 메모리 저장소를 쓴다.
"""

import logging
import time
from typing import Callable, Optional

import config
from api.sample_tests import SAMPLE_VERSIONS
from exam_engine.services.integrity_monitor import IntegrityMonitor
from exam_engine.services.session_controller import SessionController
from exam_engine.services.session_store import JsonFileSessionStore, MemorySessionStore, SessionStore
from exam_engine.services.test_catalog import InMemoryTestCatalog, TestCatalog, load_catalog_file
from exam_engine.services.timer_service import TimerCoordinator

logger = logging.getLogger(__name__)


class Engine:
    def __init__(
        self,
        catalog: TestCatalog,
        store: SessionStore,
        clock: Callable[[], float] = time.time,
        controller: Optional[SessionController] = None,
    ):
        self.catalog = catalog
        self.store = store
        self.controller = controller or SessionController(catalog, store, clock=clock)
        self.timer = TimerCoordinator(self.controller)
        self.monitor = IntegrityMonitor(self.controller)


def build_engine() -> Engine:
    if config.CATALOG_FILE:
        catalog = load_catalog_file(config.CATALOG_FILE)
    else:
        logger.info("CATALOG_FILE 미설정, 샘플 시험 사용")
        catalog = InMemoryTestCatalog(SAMPLE_VERSIONS)

    if config.DATA_DIR:
        store: SessionStore = JsonFileSessionStore(config.DATA_DIR)
        logger.info(f"JSON 세션 저장소 사용: {config.DATA_DIR}")
    else:
        store = MemorySessionStore()

    return Engine(catalog, store)
