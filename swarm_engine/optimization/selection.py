"""
選擇算子 (Selection Operator)

負責從種群中選擇親代進行繁衍，實作競賽選擇、適應度比例選擇與精英保留機制。
"""

from typing import List

import numpy as np

from .models import Candidate, Population, fitness_key


class SelectionOperator:
    """選擇算子

    實作競賽選擇 (Tournament Selection)、輪盤選擇 (Roulette Wheel Selection)
    與精英保留 (Elitism) 機制。最小化問題，適應度越小越好。

    Attributes:
        tournament_size: 競賽選擇的參與者數量 (k)
        method: 選擇方式，tournament 或 roulette
    """

    METHODS = ("tournament", "roulette")

    def __init__(
        self,
        tournament_size: int = 3,
        method: str = "tournament",
    ):
        """初始化選擇算子

        Args:
            tournament_size: 競賽選擇的參與者數量，預設為 3
            method: 選擇方式，預設為 tournament

        Raises:
            ValueError: 若 tournament_size < 1 或 method 未知
        """
        if tournament_size < 1:
            raise ValueError(
                f"Tournament size must be at least 1, got {tournament_size}"
            )
        if method not in self.METHODS:
            raise ValueError(f"Unknown selection method: {method}")

        self.tournament_size = tournament_size
        self.method = method

    def tournament_select(
        self,
        population: Population,
        rng: np.random.Generator,
    ) -> Candidate:
        """競賽選擇

        從種群中隨機選擇 k 個個體，返回其中適應度最佳者。

        Args:
            population: 種群
            rng: 隨機數產生器

        Returns:
            競賽勝出的候選解

        Raises:
            ValueError: 若種群為空
        """
        if not len(population):
            raise ValueError("Population cannot be empty")

        # 確保競賽大小不超過種群大小
        actual_tournament_size = min(self.tournament_size, len(population))

        participants = rng.choice(len(population), size=actual_tournament_size, replace=False)

        # 同分時選擇索引較小者
        winner = min(sorted(int(i) for i in participants), key=lambda i: fitness_key(population[i].fitness))

        return population[winner]

    def roulette_select(
        self,
        population: Population,
        rng: np.random.Generator,
    ) -> Candidate:
        """適應度比例選擇

        最小化問題下，權重為 (最差有限適應度 - 適應度)，
        使較佳者有較高機率被選中。無限大適應度權重為零。
        """
        if not len(population):
            raise ValueError("Population cannot be empty")

        fitness = population.fitness_values()
        finite = np.isfinite(fitness)

        if not finite.any():
            return population[int(rng.integers(len(population)))]

        worst = fitness[finite].max()
        weights = np.where(finite, worst - fitness, 0.0)
        # 所有有限個體同分時退化為均勻選擇
        weights = weights + np.where(finite, 1e-12, 0.0)
        probabilities = weights / weights.sum()

        return population[int(rng.choice(len(population), p=probabilities))]

    def select_parents(
        self,
        population: Population,
        num_parents: int,
        rng: np.random.Generator,
    ) -> List[Candidate]:
        """選擇親代

        Args:
            population: 種群
            num_parents: 需要選擇的親代數量
            rng: 隨機數產生器

        Returns:
            選中的親代列表

        Raises:
            ValueError: 若種群為空或 num_parents < 1
        """
        if not len(population):
            raise ValueError("Population cannot be empty")

        if num_parents < 1:
            raise ValueError(
                f"Number of parents must be at least 1, got {num_parents}"
            )

        select = self.tournament_select if self.method == "tournament" else self.roulette_select
        return [select(population, rng) for _ in range(num_parents)]

    def get_elite(
        self,
        population: Population,
        elite_count: int,
    ) -> List[Candidate]:
        """獲取精英個體

        返回種群中適應度最佳的前 elite_count 個候選解。
        精英將原封不動進入下一代，不經過交叉和突變。

        Args:
            population: 種群
            elite_count: 精英數量

        Returns:
            精英候選解列表（依適應度排序）
        """
        if elite_count <= 0:
            return []

        ranked = population.ranked_indices()
        return [population[i] for i in ranked[:elite_count]]
