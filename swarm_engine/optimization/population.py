"""
種群管理 (Population Management)

負責生成初始種群、以有界並行方式評估候選解，並追蹤歷史最佳解。
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .exceptions import DimensionMismatchError, EvaluationFailedError
from .models import (
    WORST_FITNESS,
    Bounds,
    Candidate,
    Fitness,
    Population,
    is_better,
)
from .objective import ObjectiveFunction

logger = logging.getLogger(__name__)


class PopulationGenerator:
    """種群生成器

    在邊界內以均勻分布生成初始種群。給定相同種子必產生相同種群。

    Attributes:
        bounds: 搜尋空間邊界
        population_size: 種群大小
    """

    def __init__(self, bounds: Bounds, population_size: int):
        """初始化種群生成器

        Args:
            bounds: 搜尋空間邊界
            population_size: 種群大小

        Raises:
            ValueError: 若 population_size < 1
        """
        if population_size < 1:
            raise ValueError(f"Population size must be at least 1, got {population_size}")

        self.bounds = bounds
        self.population_size = population_size

    def initialize(
        self,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> Population:
        """生成初始種群

        Args:
            seed: 隨機種子（rng 未提供時使用）
            rng: 隨機數產生器，優先於 seed

        Returns:
            第 0 代、尚未評估的種群
        """
        generator = rng if rng is not None else np.random.default_rng(seed)
        positions = generator.uniform(
            self.bounds.low,
            self.bounds.high,
            size=(self.population_size, self.bounds.dimension),
        )
        candidates = [Candidate(position=row) for row in positions]
        return Population(candidates=tuple(candidates), generation=0)


def initialize(
    bounds: Bounds,
    size: int,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> Population:
    """以均勻分布在邊界內生成種群"""
    return PopulationGenerator(bounds, size).initialize(seed=seed, rng=rng)


def track_best(population: Population, previous: Optional[Candidate] = None) -> Optional[Candidate]:
    """追蹤歷史最佳候選解

    最小化問題，越小越好。只有嚴格更佳才會取代，因此同分時保留最早發現者。

    Args:
        population: 已評估的種群
        previous: 先前的歷史最佳

    Returns:
        單調不退化的歷史最佳候選解
    """
    best = previous
    for candidate in population.candidates:
        if not candidate.is_evaluated:
            continue
        if best is None or is_better(candidate.fitness, best.fitness):
            best = candidate
    return best


def check_diversity(population: Population, bounds: Bounds) -> float:
    """計算種群多樣性指標

    使用各維度標準差相對於均勻分布標準差的比值平均。
    範圍為 [0, 1]，值越高表示多樣性越好。
    """
    if len(population) < 2:
        return 0.0

    positions = population.positions()
    # 均勻分布的標準差為 range / sqrt(12)
    expected_std = bounds.span / math.sqrt(12)
    normalized = np.minimum(positions.std(axis=0) / expected_std, 1.0)
    return float(normalized.mean())


def validate_population_bounds(population: Population, bounds: Bounds) -> bool:
    """驗證種群中所有候選解是否在邊界內"""
    return all(bounds.contains(candidate.position) for candidate in population.candidates)


@dataclass
class EvaluationOutcome:
    """單一候選解的評估結果"""
    fitness: Fitness
    failed: bool
    error: Optional[EvaluationFailedError] = None


class PopulationEvaluator:
    """種群評估器

    並行評估尚未評估的候選解，並發數量由 max_workers 限制。
    評估結果依索引放回，與完成順序無關。

    失敗處理：
    - 單一候選解失敗時以指數退避重試
    - 重試用盡後指派最差適應度；strict 模式下則拋出 EvaluationFailedError

    Attributes:
        objective: 目標函數
        max_workers: 最大並行評估數（1 表示在呼叫執行緒中依序評估）
        retries: 每個候選解的重試次數
        backoff_seconds: 第一次重試前的等待秒數
        backoff_multiplier: 每次重試的等待倍數
        strict: 是否在重試用盡時讓任務失敗
        evaluations: 累計評估次數
        failed_evaluations: 累計失敗（指派最差適應度）次數
    """

    def __init__(
        self,
        objective: ObjectiveFunction,
        max_workers: int = 1,
        retries: int = 2,
        backoff_seconds: float = 0.0,
        backoff_multiplier: float = 2.0,
        strict: bool = False,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        if retries < 0:
            raise ValueError(f"retries must be >= 0, got {retries}")

        self.objective = objective
        self.max_workers = max_workers
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self.backoff_multiplier = backoff_multiplier
        self.strict = strict
        self.evaluations = 0
        self.failed_evaluations = 0
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def sentinel_fitness(self) -> Fitness:
        """最差適應度"""
        if self.objective.n_objectives > 1:
            return tuple([WORST_FITNESS] * self.objective.n_objectives)
        return WORST_FITNESS

    def evaluate(self, population: Population) -> Population:
        """評估種群中所有尚未評估的候選解

        Args:
            population: 種群

        Returns:
            完整評估且更新歷史最佳的新種群

        Raises:
            DimensionMismatchError: 候選解維度與目標函數不符
            EvaluationFailedError: strict 模式下重試用盡
        """
        pending = [i for i, c in enumerate(population.candidates) if not c.is_evaluated]
        candidates = list(population.candidates)

        if pending:
            fitness_values = self.evaluate_positions([candidates[i].position for i in pending])
            for index, fitness in zip(pending, fitness_values):
                candidates[index] = candidates[index].with_fitness(fitness)

        evaluated = population.with_candidates(candidates)
        return Population(
            candidates=evaluated.candidates,
            generation=evaluated.generation,
            best=track_best(evaluated, population.best),
        )

    def evaluate_positions(self, positions: Sequence[np.ndarray]) -> List[Fitness]:
        """評估一批位置向量，回傳與輸入順序相同的適應度列表

        所有已送出的評估都會執行完畢後才回傳或拋出例外。
        """
        for position in positions:
            if np.size(position) != self.objective.dimension:
                raise DimensionMismatchError(self.objective.dimension, int(np.size(position)), "objective")

        if self.max_workers == 1 or len(positions) <= 1:
            outcomes = [self._evaluate_with_retry(p) for p in positions]
        else:
            executor = self._get_executor()
            futures = [executor.submit(self._evaluate_with_retry, p) for p in positions]
            wait(futures)
            outcomes = [f.result() for f in futures]

        self.evaluations += len(outcomes)
        for outcome in outcomes:
            if outcome.failed:
                self.failed_evaluations += 1
                if self.strict:
                    raise outcome.error

        return [outcome.fitness for outcome in outcomes]

    def _evaluate_with_retry(self, position: np.ndarray) -> EvaluationOutcome:
        """帶重試邏輯的單一候選解評估"""
        attempts = self.retries + 1
        delay = self.backoff_seconds
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                return EvaluationOutcome(fitness=self._coerce(self.objective.evaluate(position)), failed=False)
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Evaluation attempt {attempt + 1}/{attempts} failed for {self.objective.name}: {e}"
                )
                if attempt < attempts - 1 and delay > 0:
                    time.sleep(delay)
                    delay *= self.backoff_multiplier

        reason = last_error.reason if isinstance(last_error, EvaluationFailedError) else str(last_error)
        logger.error(f"All {attempts} evaluation attempts failed for {self.objective.name}: {reason}")
        return EvaluationOutcome(
            fitness=self.sentinel_fitness,
            failed=True,
            error=EvaluationFailedError(reason, attempts=attempts),
        )

    def _coerce(self, value: Fitness) -> Fitness:
        """驗證並轉換目標函數的回傳值"""
        if self.objective.n_objectives > 1:
            try:
                values = tuple(float(v) for v in value)
            except (TypeError, ValueError):
                raise EvaluationFailedError(f"expected {self.objective.n_objectives} objectives, got {value!r}") from None
            if len(values) != self.objective.n_objectives:
                raise EvaluationFailedError(
                    f"expected {self.objective.n_objectives} objectives, got {len(values)}"
                )
            if any(math.isnan(v) for v in values):
                raise EvaluationFailedError("objective returned NaN")
            return values

        try:
            fitness = float(value)
        except (TypeError, ValueError):
            raise EvaluationFailedError(f"objective returned a non-numeric value: {value!r}") from None
        if math.isnan(fitness):
            raise EvaluationFailedError("objective returned NaN")
        return fitness

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="swarm-eval",
            )
        return self._executor

    def close(self) -> None:
        """關閉評估執行緒池"""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


def evaluate(population: Population, objective: ObjectiveFunction, max_workers: int = 1) -> Population:
    """以預設重試策略評估種群"""
    evaluator = PopulationEvaluator(objective, max_workers=max_workers)
    try:
        return evaluator.evaluate(population)
    finally:
        evaluator.close()
