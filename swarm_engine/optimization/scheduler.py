"""
任務排程器 (Optimization Job Scheduler)

接收任務描述、同步驗證後在背景執行緒中執行，並提供狀態查詢、
進度訂閱、協作式取消與結果取得。

每個任務在排程器執行緒池的獨立工作執行緒上執行，任務之間不共用可變狀態。
代理人檔案只在任務終止時讀寫一次。
"""

import logging
import threading
import uuid
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterator, List, Optional, Union

from ..agents.progression import (
    AgentProfile,
    InMemoryProfileStore,
    LevelUpEvent,
    ProfileStore,
    ProgressionPolicy,
)
from ..config import EngineConfig
from ..logging_setup import configure_logging
from .exceptions import JobNotFoundError
from .generation import GenerationController
from .models import JobDescriptor, JobFailure, JobResult, JobStatus, ProgressSnapshot, RunState
from .registry import validate_descriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobHandle:
    """任務控制代碼"""
    job_id: str


class ProgressFeed:
    """單一任務的進度快照序列

    發布端為任務執行緒；每個訂閱者從訂閱當下的最新快照開始讀取，
    在終止快照之後結束。訂閱者放棄讀取不影響任務。

    只保留最近 capacity 筆快照，落後的訂閱者直接跳到最舊的保留快照。
    """

    def __init__(self, capacity: int = 64):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._snapshots: Deque[ProgressSnapshot] = deque(maxlen=capacity)
        self._published = 0
        self._closed = False
        self._condition = threading.Condition()

    @property
    def closed(self) -> bool:
        with self._condition:
            return self._closed

    @property
    def published(self) -> int:
        """累計發布的快照數"""
        with self._condition:
            return self._published

    def __len__(self) -> int:
        with self._condition:
            return len(self._snapshots)

    def latest(self) -> Optional[ProgressSnapshot]:
        with self._condition:
            return self._snapshots[-1] if self._snapshots else None

    def publish(self, snapshot: ProgressSnapshot) -> None:
        with self._condition:
            if self._closed:
                raise RuntimeError("Cannot publish to a closed progress feed")
            self._snapshots.append(snapshot)
            self._published += 1
            self._condition.notify_all()

    def close(self) -> None:
        with self._condition:
            self._closed = True
            self._condition.notify_all()

    def subscribe(self, timeout: Optional[float] = None) -> Iterator[ProgressSnapshot]:
        """訂閱進度

        Args:
            timeout: 等待下一筆快照的秒數上限，None 表示不限

        Returns:
            有限、單次使用的快照迭代器
        """
        with self._condition:
            # 游標為絕對序號，不受緩衝區捨棄舊快照影響
            cursor = max(self._published - 1, 0)

        while True:
            with self._condition:
                while cursor >= self._published and not self._closed:
                    if not self._condition.wait(timeout):
                        return
                if cursor >= self._published:
                    return
                first = self._published - len(self._snapshots)
                cursor = max(cursor, first)
                snapshot = self._snapshots[cursor - first]
                cursor += 1
            yield snapshot


@dataclass
class _JobRecord:
    handle: JobHandle
    descriptor: JobDescriptor
    feed: ProgressFeed
    status: JobStatus
    cancel_event: threading.Event
    controller: Optional[GenerationController] = None
    future: Optional[Future] = None
    result: Optional[JobResult] = None
    lock: threading.Lock = field(default_factory=threading.Lock)


class JobScheduler:
    """優化任務排程器

    使用方式：
        with JobScheduler(EngineConfig(max_concurrent_jobs=2)) as scheduler:
            handle = scheduler.submit_job(descriptor)
            for snapshot in scheduler.subscribe_progress(handle):
                print(snapshot.generation, snapshot.best_fitness)
            result = scheduler.get_result(handle)

    任務終止後只保留 JobResult；已終止的任務超過 max_retained_jobs 時
    移除最舊者，也可用 forget() 主動移除。

    Attributes:
        config: 引擎配置
        profile_store: 代理人檔案儲存
        progression: 經驗值與等級策略
        on_level_up: 升級事件回調函數
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        profile_store: Optional[ProfileStore] = None,
        progression: Optional[ProgressionPolicy] = None,
        on_level_up: Optional[Callable[[LevelUpEvent], None]] = None,
    ):
        self.config = config or EngineConfig()
        self.profile_store = profile_store if profile_store is not None else InMemoryProfileStore()
        self.progression = progression or ProgressionPolicy()
        self.on_level_up = on_level_up
        configure_logging(self.config.log_level)

        self._jobs: Dict[str, _JobRecord] = {}
        self._finished: Deque[str] = deque()
        self._jobs_lock = threading.Lock()
        self._profile_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_concurrent_jobs,
            thread_name_prefix="swarm-job",
        )
        self._shutdown = False

    def __enter__(self) -> "JobScheduler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True, cancel_pending=exc_type is not None)

    def submit_job(self, descriptor: JobDescriptor) -> JobHandle:
        """提交任務

        Args:
            descriptor: 任務描述

        Returns:
            任務控制代碼

        Raises:
            InvalidDescriptorError: 任務描述無效（不會建立任務）
            RuntimeError: 排程器已關閉
        """
        optimizer = validate_descriptor(descriptor)

        job_id = uuid.uuid4().hex
        handle = JobHandle(job_id)
        feed = ProgressFeed(self.config.progress_buffer_size)
        cancel_event = threading.Event()
        controller = GenerationController(
            descriptor,
            config=self.config,
            job_id=job_id,
            cancel_event=cancel_event,
            optimizer=optimizer,
            progress_callback=feed.publish,
        )
        record = _JobRecord(
            handle=handle,
            descriptor=descriptor,
            feed=feed,
            status=controller.status(),
            cancel_event=cancel_event,
            controller=controller,
        )
        controller.status_callback = lambda status: self._on_status(record, status)

        with self._jobs_lock:
            if self._shutdown:
                raise RuntimeError("Scheduler has been shut down")
            self._jobs[job_id] = record
            record.future = self._executor.submit(self._run, record)

        logger.info(
            f"Submitted job {job_id} ({descriptor.job_name or descriptor.algorithm.value}"
            f"{', agent ' + descriptor.agent_id if descriptor.agent_id else ''})"
        )
        return handle

    def get_status(self, handle: Union[JobHandle, str]) -> JobStatus:
        """非阻塞查詢任務狀態"""
        record = self._get_record(handle)
        with record.lock:
            return record.status

    def subscribe_progress(
        self,
        handle: Union[JobHandle, str],
        timeout: Optional[float] = None,
    ) -> Iterator[ProgressSnapshot]:
        """訂閱任務進度，於終止快照後結束"""
        return self._get_record(handle).feed.subscribe(timeout=timeout)

    def cancel(self, handle: Union[JobHandle, str]) -> bool:
        """請求取消任務

        任務在目前世代評估完成後停止。

        Returns:
            請求是否被接受（已終止的任務回傳 False）
        """
        record = self._get_record(handle)
        with record.lock:
            if record.result is not None:
                return False
            record.cancel_event.set()
        logger.info(f"Cancellation requested for job {record.handle.job_id}")
        return True

    def get_result(self, handle: Union[JobHandle, str]) -> Optional[JobResult]:
        """取得任務結果，尚未終止時為 None"""
        record = self._get_record(handle)
        with record.lock:
            return record.result

    def wait(self, handle: Union[JobHandle, str], timeout: Optional[float] = None) -> JobResult:
        """阻塞直到任務終止

        Raises:
            concurrent.futures.TimeoutError: 超過等待時間
            Exception: 任務在世代迴圈之外發生的錯誤（狀態已標記為 FAILED）
        """
        return self._get_record(handle).future.result(timeout=timeout)

    def forget(self, handle: Union[JobHandle, str]) -> bool:
        """移除已終止任務的紀錄

        Returns:
            是否已移除（尚未終止的任務回傳 False）
        """
        record = self._get_record(handle)
        with record.lock:
            if record.result is None:
                return False
        job_id = record.handle.job_id
        with self._jobs_lock:
            self._jobs.pop(job_id, None)
            if job_id in self._finished:
                self._finished.remove(job_id)
        return True

    def list_jobs(self) -> List[JobStatus]:
        with self._jobs_lock:
            records = list(self._jobs.values())
        statuses = []
        for record in records:
            with record.lock:
                statuses.append(record.status)
        return statuses

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        """關閉排程器

        Args:
            wait: 是否等待執行中的任務結束
            cancel_pending: 是否對所有未終止的任務請求取消
        """
        with self._jobs_lock:
            self._shutdown = True
            records = list(self._jobs.values())
        if cancel_pending:
            for record in records:
                record.cancel_event.set()
        self._executor.shutdown(wait=wait)

    def get_profile(self, agent_id: str) -> Optional[AgentProfile]:
        return self.profile_store.load(agent_id)

    def _get_record(self, handle: Union[JobHandle, str]) -> _JobRecord:
        job_id = handle.job_id if isinstance(handle, JobHandle) else handle
        with self._jobs_lock:
            record = self._jobs.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record

    def _on_status(self, record: _JobRecord, status: JobStatus) -> None:
        # 終止狀態在結果寫入後才對外可見
        if status.state.is_terminal:
            return
        with record.lock:
            record.status = status

    def _run(self, record: _JobRecord) -> JobResult:
        controller = record.controller
        try:
            result = controller.run(publish_terminal=False)

            if record.descriptor.agent_id is not None:
                self._update_profile(record.descriptor.agent_id, result)

            with record.lock:
                record.result = result
                record.status = JobStatus(
                    job_id=result.job_id,
                    state=result.state,
                    generation=controller.state.generation,
                    best_fitness=result.best_fitness,
                )
            record.feed.publish(controller.snapshot())
            return result
        except Exception as e:
            self._abort(record, controller, e)
            raise
        finally:
            record.feed.close()
            with record.lock:
                record.controller = None
            self._retire(record)

    def _abort(self, record: _JobRecord, controller: GenerationController, error: Exception) -> None:
        """世代迴圈之外的錯誤：尚無結果時將任務標記為 FAILED"""
        logger.error(f"Job {record.handle.job_id} aborted outside the generation loop: {error}")
        with record.lock:
            if record.result is not None:
                return
            state = controller.state
            state.state = RunState.FAILED
            state.failure = JobFailure.from_exception(error, state.generation)
            state.termination_reason = f"{type(error).__name__}: {error}"
            record.result = state.to_result()
            record.status = JobStatus(
                job_id=state.job_id,
                state=RunState.FAILED,
                generation=state.generation,
                best_fitness=state.best_fitness,
            )

    def _retire(self, record: _JobRecord) -> None:
        """登記已終止任務，超過保留上限時移除最舊者"""
        job_id = record.handle.job_id
        with self._jobs_lock:
            if job_id not in self._jobs:
                return
            self._finished.append(job_id)
            while len(self._finished) > self.config.max_retained_jobs:
                evicted = self._finished.popleft()
                self._jobs.pop(evicted, None)
                logger.debug(f"Evicted finished job {evicted}")

    def _update_profile(self, agent_id: str, result: JobResult) -> None:
        """於任務終止時更新代理人檔案，儲存錯誤只記錄不拋出"""
        try:
            with self._profile_lock:
                profile = self.profile_store.load(agent_id) or AgentProfile(agent_id=agent_id)
                updated = self.progression.record_outcome(profile, result)
                self.profile_store.save(updated)
        except Exception as e:
            logger.error(f"Failed to update profile for agent {agent_id} after job {result.job_id}: {e}")
            return

        if self.on_level_up is not None:
            for event in updated.level_ups:
                try:
                    self.on_level_up(event)
                except Exception as e:
                    logger.error(f"Level-up callback failed for agent {agent_id}: {e}")

        if result.state in (RunState.CANCELLED, RunState.FAILED):
            logger.info(f"Agent {agent_id} earned no experience from {result.state.value} job {result.job_id}")
