"""Objective Function Interface - 目標函數介面

This module defines the evaluation contract consumed by the optimization core,
plus a small set of benchmark objectives.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence

import numpy as np

from .models import Bounds, Fitness


class ObjectiveFunction(ABC):
    """目標函數抽象介面

    將候選向量映射為適應度（越小越好）。實作必須為純函數且無副作用，
    因為引擎會在多個執行緒中同時呼叫 evaluate。

    Attributes:
        bounds: 宣告的搜尋空間邊界
        name: 目標函數名稱
        n_objectives: 目標數量（大於 1 時 evaluate 回傳元組）
    """

    def __init__(self, bounds: Bounds, name: Optional[str] = None, n_objectives: int = 1):
        if n_objectives < 1:
            raise ValueError(f"n_objectives must be >= 1, got {n_objectives}")
        self.bounds = bounds
        self.name = name or type(self).__name__
        self.n_objectives = n_objectives

    @property
    def dimension(self) -> int:
        return self.bounds.dimension

    @abstractmethod
    def evaluate(self, candidate: np.ndarray) -> Fitness:
        """評估候選向量

        Args:
            candidate: 長度為 dimension 的位置向量（唯讀）

        Returns:
            純量適應度，或多目標模式下的元組

        Raises:
            EvaluationFailedError: 無法完成評估
        """
        pass

    def __call__(self, candidate: np.ndarray) -> Fitness:
        return self.evaluate(candidate)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, dimension={self.dimension})"


class CallableObjective(ObjectiveFunction):
    """以一般函數包裝的目標函數"""

    def __init__(
        self,
        func: Callable[[np.ndarray], Fitness],
        bounds: Bounds,
        name: Optional[str] = None,
        n_objectives: int = 1,
    ):
        super().__init__(bounds, name or getattr(func, "__name__", None), n_objectives)
        self._func = func

    def evaluate(self, candidate: np.ndarray) -> Fitness:
        return self._func(candidate)


def sphere(x: np.ndarray) -> float:
    """f(x) = Σ x_i²，最小值 0 位於原點"""
    return float(np.sum(np.square(x)))


def rastrigin(x: np.ndarray) -> float:
    """多峰函數，最小值 0 位於原點"""
    x = np.asarray(x)
    return float(10.0 * x.size + np.sum(x * x - 10.0 * np.cos(2.0 * np.pi * x)))


def rosenbrock(x: np.ndarray) -> float:
    """香蕉函數，最小值 0 位於 (1, ..., 1)"""
    x = np.asarray(x)
    return float(np.sum(100.0 * (x[1:] - x[:-1] ** 2) ** 2 + (1.0 - x[:-1]) ** 2))


BENCHMARKS = {
    "sphere": (sphere, (-5.0, 5.0)),
    "rastrigin": (rastrigin, (-5.12, 5.12)),
    "rosenbrock": (rosenbrock, (-2.048, 2.048)),
}


def benchmark_objective(
    name: str,
    dimension: int,
    bounds: Optional[Sequence[Sequence[float]]] = None,
) -> CallableObjective:
    """建立基準測試目標函數

    Args:
        name: sphere / rastrigin / rosenbrock
        dimension: 問題維度
        bounds: 自訂邊界，預設使用各函數的標準範圍

    Returns:
        目標函數實例
    """
    if name not in BENCHMARKS:
        raise ValueError(f"Unknown benchmark: {name!r}. Available: {sorted(BENCHMARKS)}")
    func, (low, high) = BENCHMARKS[name]
    if bounds is None:
        objective_bounds = Bounds.uniform(low, high, dimension)
    else:
        objective_bounds = Bounds.from_pairs(bounds)
    return CallableObjective(func, objective_bounds, name=name)
