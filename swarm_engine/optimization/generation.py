"""
世代控制器 (Generation Controller)

負責單一任務的迭代流程：
評估 → 記錄歷史 → 發布進度 → 檢查終止條件 → 策略更新 → 世代 + 1

終止條件在策略更新之前檢查，因此回報的最佳解必定屬於已完整評估的世代。
"""

import logging
import math
import threading
import time
import uuid
from typing import Callable, List, Optional

import numpy as np

from ..config import EngineConfig
from ..logging_setup import configure_logging
from .models import (
    BoundaryHandling,
    Fitness,
    JobDescriptor,
    JobFailure,
    JobResult,
    JobState,
    JobStatus,
    ProgressSnapshot,
    RunState,
    primary_fitness,
)
from .population import PopulationEvaluator, PopulationGenerator, check_diversity
from .registry import create_optimizer, resolve_objective, validate_descriptor
from .strategy import Optimizer, StepContext

logger = logging.getLogger(__name__)


def improvement_between(previous: Fitness, current: Fitness) -> float:
    """兩個歷史最佳值之間的改善量（主要目標，越大越好）"""
    prev = primary_fitness(previous)
    cur = primary_fitness(current)
    if math.isinf(prev) and math.isinf(cur):
        return 0.0
    if math.isinf(prev):
        return math.inf
    return prev - cur


class GenerationController:
    """世代控制器

    每個任務一個實例，獨佔該任務的 JobState、策略實例與隨機數產生器。

    Attributes:
        descriptor: 任務描述
        config: 引擎配置
        state: 任務執行狀態
        status_callback: 每個已評估世代呼叫一次，接收 JobStatus
        progress_callback: 每隔 progress_interval 個世代呼叫一次，接收 ProgressSnapshot
    """

    def __init__(
        self,
        descriptor: JobDescriptor,
        config: Optional[EngineConfig] = None,
        job_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        status_callback: Optional[Callable[[JobStatus], None]] = None,
        progress_callback: Optional[Callable[[ProgressSnapshot], None]] = None,
        optimizer: Optional[Optimizer] = None,
    ):
        """初始化世代控制器

        Args:
            descriptor: 已驗證的任務描述
            config: 引擎配置，預設使用 EngineConfig()
            job_id: 任務 ID，預設自動產生
            cancel_event: 協作式取消旗標
            status_callback: 狀態回調函數
            progress_callback: 進度回調函數
            optimizer: 預先建立的策略實例，預設依描述建立
        """
        self.descriptor = descriptor
        self.config = config or EngineConfig()
        self.state = JobState(job_id=job_id or uuid.uuid4().hex, descriptor=descriptor)
        self.cancel_event = cancel_event or threading.Event()
        self.status_callback = status_callback
        self.progress_callback = progress_callback
        self._optimizer = optimizer

    @property
    def job_id(self) -> str:
        return self.state.job_id

    def cancel(self) -> None:
        self.cancel_event.set()

    def status(self) -> JobStatus:
        return JobStatus(
            job_id=self.state.job_id,
            state=self.state.state,
            generation=self.state.generation,
            best_fitness=self.state.best_fitness,
        )

    def run(self, publish_terminal: bool = True) -> JobResult:
        """執行任務直到終止狀態

        任何策略或評估錯誤都會使任務進入 FAILED 並記錄失敗原因，
        不會向呼叫端拋出。

        Args:
            publish_terminal: 是否由本控制器發布終止進度快照

        Returns:
            任務結果
        """
        descriptor = self.descriptor
        state = self.state
        termination = descriptor.termination

        seed = descriptor.seed
        if seed is None:
            seed = int(np.random.SeedSequence().entropy)
            logger.info(f"Job {state.job_id}: no seed given, using generated seed {seed}")
        state.seed = seed
        rng = np.random.default_rng(seed)

        boundary = descriptor.boundary_handling or BoundaryHandling(self.config.default_boundary_handling)

        state.state = RunState.RUNNING
        state.started_at = time.monotonic()
        self._notify_status()
        logger.info(
            f"Job {state.job_id} started: {descriptor.algorithm.value}, "
            f"dim={descriptor.dimension}, pop={descriptor.population_size}, "
            f"max_generations={termination.max_generations}"
        )

        evaluator: Optional[PopulationEvaluator] = None
        try:
            objective = resolve_objective(descriptor.objective, descriptor.bounds)
            evaluator = PopulationEvaluator(
                objective,
                max_workers=self.config.evaluation_workers,
                retries=self.config.evaluation_retries,
                backoff_seconds=self.config.retry_backoff_seconds,
                backoff_multiplier=self.config.retry_backoff_multiplier,
                strict=self.config.strict_evaluation,
            )
            optimizer = self._optimizer or create_optimizer(descriptor.algorithm, descriptor.hyperparameters)
            context = StepContext(
                bounds=descriptor.bounds,
                rng=rng,
                evaluate=evaluator.evaluate_positions,
                generation=0,
                max_generations=termination.max_generations,
                boundary_handling=boundary,
            )

            population = PopulationGenerator(descriptor.bounds, descriptor.population_size).initialize(rng=rng)

            while True:
                # 1. 評估
                population = evaluator.evaluate(population)
                state.population = population
                state.generation = population.generation
                state.evaluations = evaluator.evaluations
                state.failed_evaluations = evaluator.failed_evaluations

                # 2. 記錄歷史最佳
                state.history.append(population.best.fitness)
                if state.initial_best_fitness is None:
                    state.initial_best_fitness = population.best.fitness

                # 3. 發布進度
                self._notify_status()
                if population.generation % self.config.progress_interval == 0:
                    self._notify_progress(self.snapshot())

                logger.debug(
                    f"Job {state.job_id} generation {population.generation}: "
                    f"best={state.best_fitness}, evaluations={state.evaluations}"
                )

                # 4. 檢查終止條件
                terminal = self._check_termination()
                if terminal is not None:
                    state.state = terminal
                    break

                # 5. 策略更新
                context.generation = population.generation
                population = optimizer.step(population, context)

        except Exception as e:
            state.state = RunState.FAILED
            state.failure = JobFailure.from_exception(e, state.generation)
            state.termination_reason = f"{type(e).__name__}: {e}"
            logger.error(f"Job {state.job_id} failed at generation {state.generation}: {e}")
        finally:
            if evaluator is not None:
                state.evaluations = evaluator.evaluations
                state.failed_evaluations = evaluator.failed_evaluations
                evaluator.close()
            state.finished_at = time.monotonic()

        self._notify_status()
        if state.state != RunState.FAILED:
            logger.info(
                f"Job {state.job_id} finished: {state.state.value} after {len(state.history)} generations, "
                f"best={state.best_fitness} ({state.termination_reason})"
            )
        if publish_terminal:
            self._notify_progress(self.snapshot())

        return state.to_result()

    def snapshot(self) -> ProgressSnapshot:
        """以目前狀態建立進度快照"""
        state = self.state
        population = state.population
        mean_fitness = None
        diversity = 0.0
        if population is not None:
            values = population.fitness_values()
            finite = values[np.isfinite(values)]
            if finite.size:
                mean_fitness = float(finite.mean())
            diversity = check_diversity(population, self.descriptor.bounds)

        return ProgressSnapshot(
            job_id=state.job_id,
            state=state.state,
            generation=state.generation,
            best_fitness=state.best_fitness,
            mean_fitness=mean_fitness,
            evaluations=state.evaluations,
            diversity=diversity,
        )

    def _check_termination(self) -> Optional[RunState]:
        """依序檢查取消、目標值、停滯、最大世代數

        Returns:
            終止狀態，尚未終止時為 None
        """
        state = self.state
        termination = self.descriptor.termination

        if self.cancel_event.is_set():
            state.termination_reason = "cancelled by caller"
            return RunState.CANCELLED

        best = primary_fitness(state.best_fitness)
        if termination.target_fitness is not None and best <= termination.target_fitness:
            state.termination_reason = f"target fitness {termination.target_fitness} reached"
            return RunState.CONVERGED

        if termination.stagnation_window is not None and self._is_stagnant(state.history):
            state.termination_reason = (
                f"no improvement above {termination.stagnation_tolerance} "
                f"for {termination.stagnation_window} generations"
            )
            return RunState.STAGNATED

        if len(state.history) >= termination.max_generations:
            state.termination_reason = f"max generations ({termination.max_generations}) reached"
            return RunState.MAX_GENERATIONS_REACHED

        return None

    def _is_stagnant(self, history: List[Fitness]) -> bool:
        """連續 stagnation_window 個世代的改善量皆不超過容忍值"""
        window = self.descriptor.termination.stagnation_window
        tolerance = self.descriptor.termination.stagnation_tolerance
        if len(history) < window + 1:
            return False

        recent = history[-(window + 1):]
        return all(
            improvement_between(recent[i - 1], recent[i]) <= tolerance
            for i in range(1, len(recent))
        )

    def _notify_status(self) -> None:
        if self.status_callback is not None:
            self.status_callback(self.status())

    def _notify_progress(self, snapshot: ProgressSnapshot) -> None:
        if self.progress_callback is not None:
            self.progress_callback(snapshot)


def run_job(
    descriptor: JobDescriptor,
    config: Optional[EngineConfig] = None,
    progress_callback: Optional[Callable[[ProgressSnapshot], None]] = None,
) -> JobResult:
    """在呼叫執行緒中同步執行單一任務

    傳入 config 時依其 log_level 設定 swarm_engine logger。

    Raises:
        InvalidDescriptorError: 若任務描述無效
    """
    if config is not None:
        configure_logging(config.log_level)
    optimizer = validate_descriptor(descriptor)
    controller = GenerationController(
        descriptor,
        config=config,
        optimizer=optimizer,
        progress_callback=progress_callback,
    )
    return controller.run()
