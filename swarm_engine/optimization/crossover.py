"""
交叉算子 (Crossover Operator)

負責執行基因交叉操作，透過親代位置重組產生子代。
"""

from typing import List, Sequence, Tuple

import numpy as np

from .models import Candidate


class CrossoverOperator:
    """交叉算子

    支援混合交叉 (BLX-α)、單點交叉與雙點交叉。

    Attributes:
        crossover_rate: 交叉機率 [0, 1]
        method: blend / single_point / two_point
        alpha: BLX-α 的延伸比例
    """

    METHODS = ("blend", "single_point", "two_point")

    def __init__(
        self,
        crossover_rate: float = 0.8,
        method: str = "blend",
        alpha: float = 0.5,
    ):
        """初始化交叉算子

        Args:
            crossover_rate: 交叉機率，預設為 0.8
            method: 交叉方式，預設為 blend
            alpha: BLX-α 延伸比例，預設為 0.5

        Raises:
            ValueError: 若 crossover_rate 不在 [0, 1] 範圍內或 method 未知
        """
        if crossover_rate < 0.0 or crossover_rate > 1.0:
            raise ValueError(
                f"Crossover rate must be between 0 and 1, got {crossover_rate}"
            )
        if method not in self.METHODS:
            raise ValueError(f"Unknown crossover method: {method}")

        self.crossover_rate = crossover_rate
        self.method = method
        self.alpha = alpha

    def crossover(
        self,
        parent1: np.ndarray,
        parent2: np.ndarray,
        rng: np.random.Generator,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """對兩個親代執行交叉

        根據交叉機率決定是否執行交叉，未執行時直接複製親代。
        子代可能超出邊界，由呼叫端修正。

        Args:
            parent1: 第一個親代位置
            parent2: 第二個親代位置
            rng: 隨機數產生器

        Returns:
            兩個子代位置的元組
        """
        if rng.random() >= self.crossover_rate:
            return np.array(parent1), np.array(parent2)

        if self.method == "blend":
            return self.blend_crossover(parent1, parent2, rng)
        if self.method == "single_point":
            return self.single_point_crossover(parent1, parent2, rng)
        return self.two_point_crossover(parent1, parent2, rng)

    def blend_crossover(
        self,
        parent1: np.ndarray,
        parent2: np.ndarray,
        rng: np.random.Generator,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """BLX-α 混合交叉

        每個維度在 [min - α·d, max + α·d] 內均勻取樣，d 為兩親代距離。
        """
        low = np.minimum(parent1, parent2)
        high = np.maximum(parent1, parent2)
        extent = self.alpha * (high - low)
        child1 = rng.uniform(low - extent, high + extent)
        child2 = rng.uniform(low - extent, high + extent)
        return child1, child2

    def single_point_crossover(
        self,
        parent1: np.ndarray,
        parent2: np.ndarray,
        rng: np.random.Generator,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """單點交叉，單一維度時直接複製親代"""
        length = parent1.size
        if length < 2:
            return np.array(parent1), np.array(parent2)

        point = int(rng.integers(1, length))
        child1 = np.concatenate([parent1[:point], parent2[point:]])
        child2 = np.concatenate([parent2[:point], parent1[point:]])
        return child1, child2

    def two_point_crossover(
        self,
        parent1: np.ndarray,
        parent2: np.ndarray,
        rng: np.random.Generator,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """雙點交叉

        隨機選擇兩個切點，交換親代之間的片段。
        子代的數值完全來自親代，不會產生新的數值。
        """
        length = parent1.size

        # 0 <= point1 < point2 <= length
        point1 = int(rng.integers(0, length))
        point2 = int(rng.integers(point1 + 1, length + 1))

        # child1: parent1[0:point1] + parent2[point1:point2] + parent1[point2:]
        child1 = np.concatenate([parent1[:point1], parent2[point1:point2], parent1[point2:]])
        child2 = np.concatenate([parent2[:point1], parent1[point1:point2], parent2[point2:]])
        return child1, child2

    def crossover_population(
        self,
        parents: Sequence[Candidate],
        offspring_count: int,
        rng: np.random.Generator,
    ) -> List[np.ndarray]:
        """對親代執行交叉產生子代

        從親代列表中隨機配對，執行交叉操作產生指定數量的子代。

        Args:
            parents: 親代列表
            offspring_count: 需要產生的子代數量
            rng: 隨機數產生器

        Returns:
            子代位置列表

        Raises:
            ValueError: 若親代列表為空
        """
        if not parents:
            raise ValueError("Parents list cannot be empty")

        offspring: List[np.ndarray] = []

        while len(offspring) < offspring_count:
            # 隨機選擇兩個親代（允許重複選擇）
            parent1 = parents[int(rng.integers(len(parents)))]
            parent2 = parents[int(rng.integers(len(parents)))]

            child1, child2 = self.crossover(parent1.position, parent2.position, rng)

            offspring.append(child1)
            if len(offspring) < offspring_count:
                offspring.append(child2)

        return offspring[:offspring_count]
