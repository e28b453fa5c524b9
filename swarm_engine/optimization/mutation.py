"""
突變算子 (Mutation Operator)

負責執行基因突變操作，對子代引入隨機擾動以避免陷入局部最優解。
"""

from typing import List, Sequence

import numpy as np

from .models import BoundaryHandling, Bounds


class MutationOperator:
    """突變算子

    實作高斯突變 (Gaussian Mutation) 機制，對各維度引入隨機擾動。

    Attributes:
        mutation_rate: 每個維度的突變機率 [0, 1]
        mutation_strength: 高斯突變的標準差係數（相對於邊界範圍）
    """

    def __init__(
        self,
        mutation_rate: float = 0.1,
        mutation_strength: float = 0.1,
    ):
        """初始化突變算子

        Args:
            mutation_rate: 每個維度的突變機率，預設為 0.1
            mutation_strength: 高斯突變的標準差係數，預設為 0.1

        Raises:
            ValueError: 若 mutation_rate 不在 [0, 1] 範圍內或 mutation_strength <= 0
        """
        if mutation_rate < 0.0 or mutation_rate > 1.0:
            raise ValueError(
                f"Mutation rate must be between 0 and 1, got {mutation_rate}"
            )
        if mutation_strength <= 0:
            raise ValueError(f"Mutation strength must be positive, got {mutation_strength}")

        self.mutation_rate = mutation_rate
        self.mutation_strength = mutation_strength

    def gaussian_mutate(
        self,
        position: np.ndarray,
        bounds: Bounds,
        rng: np.random.Generator,
        boundary_handling: BoundaryHandling = BoundaryHandling.CLIP,
    ) -> np.ndarray:
        """高斯突變

        對每個維度以 mutation_rate 的機率加上常態分布擾動，
        標準差為邊界範圍 × mutation_strength。突變後修正回邊界內。

        Args:
            position: 要突變的位置
            bounds: 搜尋空間邊界
            rng: 隨機數產生器
            boundary_handling: 越界處理方式

        Returns:
            突變後的新位置（原陣列不變）
        """
        mask = rng.random(position.size) < self.mutation_rate
        perturbation = rng.normal(0.0, 1.0, position.size) * bounds.span * self.mutation_strength
        mutated = np.where(mask, position + perturbation, position)
        return bounds.repair(mutated, boundary_handling)

    def mutate_population(
        self,
        positions: Sequence[np.ndarray],
        bounds: Bounds,
        rng: np.random.Generator,
        boundary_handling: BoundaryHandling = BoundaryHandling.CLIP,
    ) -> List[np.ndarray]:
        """對一批位置執行突變"""
        return [self.gaussian_mutate(p, bounds, rng, boundary_handling) for p in positions]
