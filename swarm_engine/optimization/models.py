"""
優化引擎資料模型 (Optimization Data Models)

定義群體智慧優化引擎的核心資料結構，包含邊界、候選解、種群、
任務描述與任務結果。
"""

import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .exceptions import InvalidDescriptorError, is_integer_value

if TYPE_CHECKING:
    from .objective import ObjectiveFunction


Fitness = Union[float, Tuple[float, ...]]

# 評估失敗時指派的最差適應度（最小化問題）
WORST_FITNESS = math.inf


def fitness_key(fitness: Optional[Fitness]) -> Tuple[float, ...]:
    """將適應度轉換為可比較的排序鍵

    純量適應度轉為單元素元組，多目標適應度依字典序比較。
    未評估（None）視為最差。
    """
    if fitness is None:
        return (WORST_FITNESS,)
    if isinstance(fitness, tuple):
        return fitness
    return (float(fitness),)


def is_better(candidate_fitness: Optional[Fitness], reference: Optional[Fitness]) -> bool:
    """判斷 candidate_fitness 是否嚴格優於 reference（最小化）"""
    return fitness_key(candidate_fitness) < fitness_key(reference)


def primary_fitness(fitness: Optional[Fitness]) -> float:
    """取得主要目標值（多目標時為第一個分量）"""
    return fitness_key(fitness)[0]


def _frozen_array(values: Any) -> np.ndarray:
    if isinstance(values, np.ndarray) and values.dtype == np.float64 and not values.flags.writeable:
        return values
    array = np.array(values, dtype=np.float64)
    array.setflags(write=False)
    return array


class AlgorithmKind(Enum):
    """演算法類型

    Attributes:
        DE: 差分演化
        PSO: 粒子群優化
        ACO: 連續域蟻群優化
        GA: 遺傳演算法
        GWO: 灰狼優化
        WOA: 鯨魚優化
        DEPSO: 差分演化 / 粒子群混合
    """
    DE = "de"
    PSO = "pso"
    ACO = "aco"
    GA = "ga"
    GWO = "gwo"
    WOA = "woa"
    DEPSO = "depso"

    @classmethod
    def parse(cls, value: Union[str, "AlgorithmKind"]) -> "AlgorithmKind":
        """從字串或列舉值建立"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            choices = ", ".join(kind.value for kind in cls)
            raise InvalidDescriptorError(
                f"Unknown algorithm: {value!r}",
                field="algorithm",
                suggestion=f"Use one of {choices}",
            ) from None


class BoundaryHandling(Enum):
    """越界處理方式

    Attributes:
        CLIP: 截斷至最近邊界
        REFLECT: 以邊界為鏡面反射
    """
    CLIP = "clip"
    REFLECT = "reflect"


class RunState(Enum):
    """任務狀態機

    CREATED → RUNNING → {CONVERGED | MAX_GENERATIONS_REACHED | STAGNATED |
    CANCELLED | FAILED}
    """
    CREATED = "created"
    RUNNING = "running"
    CONVERGED = "converged"
    MAX_GENERATIONS_REACHED = "max_generations_reached"
    STAGNATED = "stagnated"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self not in (RunState.CREATED, RunState.RUNNING)


@dataclass(frozen=True, eq=False)
class Bounds:
    """搜尋空間邊界

    每個維度的 (最小值, 最大值)。

    Attributes:
        low: 各維度最小值
        high: 各維度最大值
    """
    low: np.ndarray
    high: np.ndarray

    def __post_init__(self):
        low = _frozen_array(self.low)
        high = _frozen_array(self.high)

        if low.ndim != 1 or high.ndim != 1 or low.shape != high.shape or low.size == 0:
            raise InvalidDescriptorError(
                f"Bounds must be two non-empty 1-D arrays of equal length, "
                f"got shapes {low.shape} and {high.shape}",
                field="bounds",
            )
        if not (np.all(np.isfinite(low)) and np.all(np.isfinite(high))):
            raise InvalidDescriptorError("Bounds must be finite", field="bounds")
        if np.any(low >= high):
            bad = int(np.argmax(low >= high))
            raise InvalidDescriptorError(
                f"Lower bound must be below upper bound in dimension {bad}: "
                f"[{low[bad]}, {high[bad]}]",
                field="bounds",
            )

        object.__setattr__(self, "low", low)
        object.__setattr__(self, "high", high)

    @classmethod
    def from_pairs(cls, pairs: Sequence[Sequence[float]]) -> "Bounds":
        """從 [(min, max), ...] 建立"""
        try:
            array = np.asarray(pairs, dtype=np.float64)
        except (TypeError, ValueError):
            raise InvalidDescriptorError(f"Malformed bounds: {pairs!r}", field="bounds") from None
        if array.ndim != 2 or array.shape[1] != 2:
            raise InvalidDescriptorError(
                f"Bounds must be a sequence of (min, max) pairs, got shape {array.shape}",
                field="bounds",
            )
        return cls(low=array[:, 0], high=array[:, 1])

    @classmethod
    def uniform(cls, low: float, high: float, dimension: int) -> "Bounds":
        """所有維度使用相同範圍"""
        if dimension < 1:
            raise InvalidDescriptorError(f"Dimension must be >= 1, got {dimension}", field="bounds")
        return cls(low=np.full(dimension, low), high=np.full(dimension, high))

    @property
    def dimension(self) -> int:
        return int(self.low.size)

    @property
    def span(self) -> np.ndarray:
        return self.high - self.low

    def contains(self, position: np.ndarray) -> bool:
        """驗證位置是否在邊界內"""
        position = np.asarray(position, dtype=np.float64)
        return bool(np.all(position >= self.low) and np.all(position <= self.high))

    def is_within(self, other: "Bounds") -> bool:
        """每個維度的範圍是否都落在 other 之內"""
        return bool(np.all(self.low >= other.low) and np.all(self.high <= other.high))

    def clip(self, positions: np.ndarray) -> np.ndarray:
        return np.clip(positions, self.low, self.high)

    def reflect(self, positions: np.ndarray) -> np.ndarray:
        """以邊界為鏡面將越界值反射回範圍內"""
        span = self.span
        offset = np.mod(np.asarray(positions, dtype=np.float64) - self.low, 2.0 * span)
        offset = np.where(offset > span, 2.0 * span - offset, offset)
        # 浮點誤差可能讓 low + span 略超過 high
        return np.clip(self.low + offset, self.low, self.high)

    def repair(self, positions: np.ndarray, mode: BoundaryHandling = BoundaryHandling.CLIP) -> np.ndarray:
        """依指定方式修正越界位置"""
        if mode == BoundaryHandling.REFLECT:
            return self.reflect(positions)
        return self.clip(positions)

    def to_pairs(self) -> List[Tuple[float, float]]:
        return [(float(lo), float(hi)) for lo, hi in zip(self.low, self.high)]


@dataclass(frozen=True, eq=False)
class Candidate:
    """候選解

    搜尋空間中的一個點及其適應度。評估後不可變，跨世代以新物件取代。
    粒子群相關狀態（速度、個體最佳）隨候選解一同傳遞。

    Attributes:
        position: 位置向量
        fitness: 適應度（None 表示尚未評估）
        velocity: 速度向量（僅 PSO 使用）
        best_position: 個體歷史最佳位置（僅 PSO 使用）
        best_fitness: 個體歷史最佳適應度（僅 PSO 使用）
    """
    position: np.ndarray
    fitness: Optional[Fitness] = None
    velocity: Optional[np.ndarray] = None
    best_position: Optional[np.ndarray] = None
    best_fitness: Optional[Fitness] = None

    def __post_init__(self):
        object.__setattr__(self, "position", _frozen_array(self.position))
        if self.velocity is not None:
            object.__setattr__(self, "velocity", _frozen_array(self.velocity))
        if self.best_position is not None:
            object.__setattr__(self, "best_position", _frozen_array(self.best_position))

    @property
    def dimension(self) -> int:
        return int(self.position.size)

    @property
    def is_evaluated(self) -> bool:
        return self.fitness is not None

    def with_fitness(self, fitness: Fitness) -> "Candidate":
        """回傳帶有適應度的新候選解"""
        return replace(self, fitness=fitness)

    def to_dict(self) -> Dict[str, Any]:
        """轉換為字典"""
        return {
            "position": self.position.tolist(),
            "fitness": list(self.fitness) if isinstance(self.fitness, tuple) else self.fitness,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candidate":
        """從字典建立"""
        fitness = data.get("fitness")
        if isinstance(fitness, list):
            fitness = tuple(float(v) for v in fitness)
        return cls(position=np.asarray(data["position"], dtype=np.float64), fitness=fitness)


@dataclass(frozen=True, eq=False)
class Population:
    """種群

    單一任務中一個世代的所有候選解。大小在任務生命週期內固定。

    Attributes:
        candidates: 候選解元組
        generation: 世代編號
        best: 跨世代的歷史最佳候選解（單調不退化）
    """
    candidates: Tuple[Candidate, ...]
    generation: int = 0
    best: Optional[Candidate] = None

    def __post_init__(self):
        object.__setattr__(self, "candidates", tuple(self.candidates))

    def __len__(self) -> int:
        return len(self.candidates)

    def __iter__(self):
        return iter(self.candidates)

    def __getitem__(self, index: int) -> Candidate:
        return self.candidates[index]

    @property
    def size(self) -> int:
        return len(self.candidates)

    @property
    def dimension(self) -> int:
        return self.candidates[0].dimension if self.candidates else 0

    @property
    def is_fully_evaluated(self) -> bool:
        return all(c.is_evaluated for c in self.candidates)

    def positions(self) -> np.ndarray:
        """回傳 (size, dimension) 的位置矩陣副本"""
        return np.array([c.position for c in self.candidates], dtype=np.float64)

    def fitness_values(self) -> np.ndarray:
        """回傳主要目標值陣列，未評估者為 WORST_FITNESS"""
        return np.array([primary_fitness(c.fitness) for c in self.candidates], dtype=np.float64)

    def ranked_indices(self) -> List[int]:
        """依適應度由佳至劣排序的索引（同分時維持原順序）"""
        return sorted(range(len(self.candidates)), key=lambda i: fitness_key(self.candidates[i].fitness))

    def current_best(self) -> Candidate:
        """本世代最佳候選解"""
        if not self.candidates:
            raise ValueError("Population cannot be empty")
        return self.candidates[self.ranked_indices()[0]]

    def with_candidates(
        self,
        candidates: Sequence[Candidate],
        generation: Optional[int] = None,
    ) -> "Population":
        """以新候選解建立種群，保留歷史最佳"""
        return Population(
            candidates=tuple(candidates),
            generation=self.generation if generation is None else generation,
            best=self.best,
        )


@dataclass
class TerminationPolicy:
    """終止條件

    Attributes:
        max_generations: 最大世代數（已評估世代）
        target_fitness: 目標適應度，達到（小於等於）即收斂
        stagnation_window: 連續無改善世代數，None 表示停用
        stagnation_tolerance: 視為改善的最小幅度
    """
    max_generations: int = 100
    target_fitness: Optional[float] = None
    stagnation_window: Optional[int] = None
    stagnation_tolerance: float = 0.0

    def validate(self) -> None:
        """驗證終止條件

        Raises:
            InvalidDescriptorError: 若任何條件無效
        """
        if not is_integer_value(self.max_generations) or self.max_generations < 1:
            raise InvalidDescriptorError(
                f"max_generations must be an integer >= 1, got {self.max_generations!r}",
                field="termination.max_generations",
            )
        self.max_generations = int(self.max_generations)
        if self.target_fitness is not None and math.isnan(float(self.target_fitness)):
            raise InvalidDescriptorError("target_fitness cannot be NaN", field="termination.target_fitness")
        if self.stagnation_window is not None and (
            not is_integer_value(self.stagnation_window)
            or self.stagnation_window < 1
        ):
            raise InvalidDescriptorError(
                f"stagnation_window must be an integer >= 1, got {self.stagnation_window!r}",
                field="termination.stagnation_window",
            )
        if self.stagnation_window is not None:
            self.stagnation_window = int(self.stagnation_window)
        if not self.stagnation_tolerance >= 0:
            raise InvalidDescriptorError(
                f"stagnation_tolerance must be >= 0, got {self.stagnation_tolerance!r}",
                field="termination.stagnation_tolerance",
            )

    def to_dict(self) -> Dict[str, Any]:
        """轉換為字典"""
        return {
            "max_generations": self.max_generations,
            "target_fitness": self.target_fitness,
            "stagnation_window": self.stagnation_window,
            "stagnation_tolerance": self.stagnation_tolerance,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TerminationPolicy":
        """從字典建立"""
        return cls(
            max_generations=int(data.get("max_generations", 100)),
            target_fitness=data.get("target_fitness"),
            stagnation_window=data.get("stagnation_window"),
            stagnation_tolerance=float(data.get("stagnation_tolerance", 0.0)),
        )


@dataclass(frozen=True, eq=False)
class JobDescriptor:
    """任務描述

    每次提交建立一次、不可變的任務配置。

    Attributes:
        algorithm: 演算法類型
        objective: 目標函數
        bounds: 搜尋空間邊界
        population_size: 種群大小
        hyperparameters: 演算法專屬超參數
        termination: 終止條件
        seed: 隨機種子（相同種子與描述可重現相同結果）
        agent_id: 代理人 ID（可選，用於經驗累積）
        job_name: 任務名稱（可選，用於日誌）
        boundary_handling: 越界處理方式，None 表示使用引擎預設
    """
    algorithm: AlgorithmKind
    objective: "ObjectiveFunction"
    bounds: Bounds
    population_size: int
    hyperparameters: Mapping[str, Any] = field(default_factory=dict)
    termination: TerminationPolicy = field(default_factory=TerminationPolicy)
    seed: Optional[int] = None
    agent_id: Optional[str] = None
    job_name: Optional[str] = None
    boundary_handling: Optional[BoundaryHandling] = None

    def __post_init__(self):
        object.__setattr__(self, "algorithm", AlgorithmKind.parse(self.algorithm))
        object.__setattr__(self, "hyperparameters", MappingProxyType(dict(self.hyperparameters or {})))
        if is_integer_value(self.population_size):
            object.__setattr__(self, "population_size", int(self.population_size))
        if isinstance(self.boundary_handling, str):
            try:
                object.__setattr__(self, "boundary_handling", BoundaryHandling(self.boundary_handling))
            except ValueError:
                raise InvalidDescriptorError(
                    f"Unknown boundary handling: {self.boundary_handling!r}",
                    field="boundary_handling",
                    suggestion="Use 'clip' or 'reflect'",
                ) from None

    @property
    def dimension(self) -> int:
        return self.bounds.dimension

    @property
    def difficulty(self) -> int:
        """任務難度代理指標：維度 × 種群大小"""
        return self.dimension * self.population_size


@dataclass
class JobFailure:
    """任務失敗原因

    Attributes:
        kind: 錯誤類型名稱
        message: 錯誤訊息
        generation: 失敗發生的世代
    """
    kind: str
    message: str
    generation: int

    @classmethod
    def from_exception(cls, exc: BaseException, generation: int) -> "JobFailure":
        return cls(kind=type(exc).__name__, message=str(exc), generation=generation)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "generation": self.generation}


@dataclass
class JobState:
    """任務執行狀態

    由單一世代控制器獨佔的可變執行紀錄。

    Attributes:
        job_id: 任務 ID
        descriptor: 任務描述
        state: 目前狀態
        population: 目前種群
        generation: 目前世代
        history: 各已評估世代的歷史最佳適應度
        termination_reason: 終止原因說明
        failure: 失敗原因
        evaluations: 目標函數評估次數
        failed_evaluations: 評估失敗（指派最差適應度）次數
        initial_best_fitness: 第 0 代最佳適應度
        seed: 實際使用的隨機種子
    """
    job_id: str
    descriptor: JobDescriptor
    state: RunState = RunState.CREATED
    population: Optional[Population] = None
    generation: int = 0
    history: List[Fitness] = field(default_factory=list)
    termination_reason: Optional[str] = None
    failure: Optional[JobFailure] = None
    evaluations: int = 0
    failed_evaluations: int = 0
    initial_best_fitness: Optional[Fitness] = None
    seed: Optional[int] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def best_fitness(self) -> Optional[Fitness]:
        return self.history[-1] if self.history else None

    def to_result(self) -> "JobResult":
        """將終止狀態封存為任務結果"""
        population = self.population
        elapsed = 0.0
        if self.started_at is not None:
            elapsed = (self.finished_at or time.monotonic()) - self.started_at
        return JobResult(
            job_id=self.job_id,
            algorithm=self.descriptor.algorithm.value,
            state=self.state,
            best=population.best if population is not None else None,
            history=tuple(self.history),
            final_population=population,
            generations=len(self.history),
            evaluations=self.evaluations,
            failed_evaluations=self.failed_evaluations,
            initial_best_fitness=self.initial_best_fitness,
            dimension=self.descriptor.dimension,
            population_size=self.descriptor.population_size,
            seed=self.seed,
            termination_reason=self.termination_reason,
            failure=self.failure,
            elapsed_seconds=elapsed,
            agent_id=self.descriptor.agent_id,
        )


@dataclass(frozen=True, eq=False)
class JobResult:
    """任務結果

    Attributes:
        job_id: 任務 ID
        algorithm: 演算法類型值
        state: 終止狀態
        best: 歷史最佳候選解
        history: 各世代歷史最佳適應度（收斂歷史）
        final_population: 最後一個完整評估的種群
        generations: 已評估世代數
        evaluations: 目標函數評估次數
        failed_evaluations: 評估失敗次數
        initial_best_fitness: 第 0 代最佳適應度
        dimension: 問題維度
        population_size: 種群大小
        seed: 實際使用的隨機種子
        termination_reason: 終止原因說明
        failure: 失敗原因（僅 FAILED）
        elapsed_seconds: 執行時間（秒）
        agent_id: 代理人 ID
    """
    job_id: str
    algorithm: str
    state: RunState
    best: Optional[Candidate]
    history: Tuple[Fitness, ...]
    final_population: Optional[Population]
    generations: int
    evaluations: int
    failed_evaluations: int
    initial_best_fitness: Optional[Fitness]
    dimension: int
    population_size: int
    seed: Optional[int] = None
    termination_reason: Optional[str] = None
    failure: Optional[JobFailure] = None
    elapsed_seconds: float = 0.0
    agent_id: Optional[str] = None

    @property
    def best_fitness(self) -> Optional[Fitness]:
        return self.best.fitness if self.best is not None else None

    @property
    def succeeded(self) -> bool:
        return self.state in (
            RunState.CONVERGED,
            RunState.MAX_GENERATIONS_REACHED,
            RunState.STAGNATED,
        )

    def to_dict(self) -> Dict[str, Any]:
        """轉換為字典，供呼叫端持久化"""
        return {
            "job_id": self.job_id,
            "algorithm": self.algorithm,
            "state": self.state.value,
            "best": self.best.to_dict() if self.best is not None else None,
            "history": [list(h) if isinstance(h, tuple) else h for h in self.history],
            "generations": self.generations,
            "evaluations": self.evaluations,
            "failed_evaluations": self.failed_evaluations,
            "dimension": self.dimension,
            "population_size": self.population_size,
            "seed": self.seed,
            "termination_reason": self.termination_reason,
            "failure": self.failure.to_dict() if self.failure is not None else None,
            "elapsed_seconds": self.elapsed_seconds,
            "agent_id": self.agent_id,
        }


@dataclass(frozen=True)
class JobStatus:
    """任務狀態快照（非阻塞查詢）"""
    job_id: str
    state: RunState
    generation: int
    best_fitness: Optional[Fitness]


@dataclass(frozen=True)
class ProgressSnapshot:
    """進度快照

    於世代邊界產生，最後一筆必為終止狀態。

    Attributes:
        job_id: 任務 ID
        state: 任務狀態
        generation: 世代編號
        best_fitness: 歷史最佳適應度
        mean_fitness: 本世代平均（主要目標）適應度
        evaluations: 累計評估次數
        diversity: 種群多樣性指標 (0-1)
    """
    job_id: str
    state: RunState
    generation: int
    best_fitness: Optional[Fitness]
    mean_fitness: Optional[float]
    evaluations: int
    diversity: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal
