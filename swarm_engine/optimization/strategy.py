"""
優化策略介面 (Optimizer Strategy Interface)

所有單一演算法與混合協調器共用的世代更新介面。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Sequence

import numpy as np

from .exceptions import (
    InvalidDescriptorError,
    InvalidHyperparameterError,
    is_integer_value,
    validate_dimension,
)
from .models import (
    AlgorithmKind,
    BoundaryHandling,
    Bounds,
    Candidate,
    Fitness,
    Population,
)


@dataclass
class StepContext:
    """世代更新所需的執行環境

    由世代控制器為每個任務建立，不跨任務共用。

    Attributes:
        bounds: 搜尋空間邊界
        rng: 任務專屬的隨機數產生器（唯一的隨機來源）
        evaluate: 並行評估一批位置向量，回傳與輸入順序相同的適應度
        generation: 目前（已評估）世代編號
        max_generations: 最大世代數，用於線性衰減係數
        boundary_handling: 越界處理方式
    """
    bounds: Bounds
    rng: np.random.Generator
    evaluate: Callable[[Sequence[np.ndarray]], List[Fitness]]
    generation: int = 0
    max_generations: int = 1
    boundary_handling: BoundaryHandling = BoundaryHandling.CLIP

    @property
    def dimension(self) -> int:
        return self.bounds.dimension

    @property
    def progress(self) -> float:
        """執行進度 t / T，範圍 [0, 1]"""
        if self.max_generations <= 1:
            return 1.0
        return min(1.0, self.generation / (self.max_generations - 1))

    def repair(self, positions: np.ndarray) -> np.ndarray:
        return self.bounds.repair(positions, self.boundary_handling)


class Optimizer(ABC):
    """優化策略基底類別

    每個策略實作一條世代更新規則：輸入已評估的種群，輸出下一代種群。
    新候選解預設不評估，由世代控制器統一並行評估；
    需要貪婪選擇的規則（DE、DEPSO）在 step 內部評估試驗解。

    策略實例由單一任務獨佔，可保存跨世代狀態（例如 ACO 的費洛蒙檔案）。

    Attributes:
        hyperparameters: 已合併預設值的超參數
    """

    kind: ClassVar[AlgorithmKind]
    MIN_POPULATION_SIZE: ClassVar[int] = 2
    DEFAULTS: ClassVar[Dict[str, Any]] = {}

    def __init__(self, hyperparameters: Optional[Mapping[str, Any]] = None):
        """初始化策略

        Args:
            hyperparameters: 演算法專屬超參數，未指定者使用 DEFAULTS

        Raises:
            InvalidHyperparameterError: 若超參數名稱未知或數值超出範圍
        """
        params = dict(self.DEFAULTS)
        for name, value in (hyperparameters or {}).items():
            if name not in self.DEFAULTS:
                raise InvalidHyperparameterError(
                    self.name, name, value, f"one of the known parameters ({', '.join(sorted(self.DEFAULTS))})"
                )
            params[name] = value
        self.hyperparameters = params
        self.validate_hyperparameters()

    @property
    def name(self) -> str:
        return self.kind.name

    @abstractmethod
    def validate_hyperparameters(self) -> None:
        """驗證超參數並快取為屬性

        Raises:
            InvalidHyperparameterError: 若任何超參數超出範圍
        """
        pass

    def validate_population_size(self, population_size: int) -> None:
        """驗證種群大小是否滿足演算法最低需求

        Raises:
            InvalidDescriptorError: 若種群過小
        """
        if not is_integer_value(population_size) or population_size < self.MIN_POPULATION_SIZE:
            raise InvalidDescriptorError(
                f"Population size {population_size!r} is below the minimum "
                f"{self.MIN_POPULATION_SIZE} for {self.name}",
                field="population_size",
                suggestion=f"Use at least {self.MIN_POPULATION_SIZE} candidates",
            )

    def step(self, population: Population, context: StepContext) -> Population:
        """由目前世代產生下一世代

        Args:
            population: 已完整評估的目前種群
            context: 執行環境

        Returns:
            下一世代種群（generation + 1）

        Raises:
            InvalidHyperparameterError: 若超參數已失效
            DimensionMismatchError: 若候選解維度與邊界不符
        """
        self.validate_hyperparameters()
        for candidate in population.candidates:
            validate_dimension(context.dimension, candidate.dimension)
        if not population.is_fully_evaluated:
            raise ValueError("Population must be fully evaluated before a strategy step")

        return self._next_generation(population, context)

    @abstractmethod
    def _next_generation(self, population: Population, context: StepContext) -> Population:
        pass

    @staticmethod
    def _unevaluated(positions: np.ndarray) -> List[Candidate]:
        return [Candidate(position=row) for row in positions]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.hyperparameters})"
