"""
蟻群優化 (Ant Colony Optimization, 連續域 ACO_R)

以有界的解檔案取代離散圖上的費洛蒙矩陣。檔案中每個解帶有費洛蒙權重：
每代先蒸發，再合併新評估的種群、保留最佳 archive_size 個解，
並依排名沉積高斯權重。新候選解以費洛蒙比例選擇引導解，
逐維從以引導解為中心的常態分布取樣。
"""

import logging
import math
from typing import List

import numpy as np

from .exceptions import validate_positive_int, validate_range
from .models import AlgorithmKind, Candidate, Population, fitness_key
from .strategy import Optimizer, StepContext

logger = logging.getLogger(__name__)


class PheromoneArchive:
    """費洛蒙解檔案

    由單一策略實例獨佔，跨世代保存狀態。

    Attributes:
        capacity: 檔案容量 (k)
        evaporation: 蒸發率 (0, 1]
        q: 排名權重的集中程度，越小越偏重最佳解
        entries: 依適應度排序的檔案解
        pheromone: 與 entries 對應的費洛蒙權重
    """

    def __init__(self, capacity: int, evaporation: float, q: float):
        self.capacity = capacity
        self.evaporation = evaporation
        self.q = q
        self.entries: List[Candidate] = []
        self.pheromone = np.zeros(0, dtype=np.float64)

    def __len__(self) -> int:
        return len(self.entries)

    def rank_weight(self, rank: int) -> float:
        """排名 rank（0 為最佳）的高斯沉積量"""
        k = self.capacity
        scale = self.q * k
        return math.exp(-(rank ** 2) / (2.0 * scale ** 2)) / (scale * math.sqrt(2.0 * math.pi))

    def update(self, candidates: List[Candidate]) -> None:
        """蒸發、合併、截斷並沉積費洛蒙

        Args:
            candidates: 已評估的候選解（未評估者略過）
        """
        evaporated = self.pheromone * (1.0 - self.evaporation)

        # 既有解排在前面，同分時保留較早進入檔案者
        merged = list(zip(self.entries, evaporated))
        merged.extend((c, 0.0) for c in candidates if c.is_evaluated)
        merged.sort(key=lambda item: fitness_key(item[0].fitness))
        merged = merged[:self.capacity]

        self.entries = [entry for entry, _ in merged]
        self.pheromone = np.array(
            [level + self.rank_weight(rank) for rank, (_, level) in enumerate(merged)],
            dtype=np.float64,
        )

    def probabilities(self) -> np.ndarray:
        total = self.pheromone.sum()
        if total <= 0 or not np.isfinite(total):
            return np.full(len(self.entries), 1.0 / len(self.entries))
        return self.pheromone / total

    def sample(self, count: int, xi: float, context: StepContext) -> np.ndarray:
        """依費洛蒙取樣新位置

        Args:
            count: 取樣數量
            xi: 標準差縮放係數
            context: 執行環境

        Returns:
            (count, dimension) 的位置矩陣（已修正邊界）
        """
        if not self.entries:
            raise ValueError("Pheromone archive is empty")

        solutions = np.array([entry.position for entry in self.entries], dtype=np.float64)
        k = len(self.entries)
        probabilities = self.probabilities()
        samples = np.empty((count, solutions.shape[1]), dtype=np.float64)

        for i in range(count):
            guide = solutions[int(context.rng.choice(k, p=probabilities))]
            sigma = xi * np.abs(solutions - guide).sum(axis=0) / max(k - 1, 1)
            samples[i] = context.rng.normal(guide, sigma)

        return context.repair(samples)


class AntColony(Optimizer):
    """連續域蟻群優化策略

    Attributes:
        archive: 費洛蒙解檔案
        xi: 取樣標準差係數
    """

    kind = AlgorithmKind.ACO
    MIN_POPULATION_SIZE = 2
    DEFAULTS = {"archive_size": 10, "evaporation": 0.1, "q": 0.2, "xi": 0.85}

    def __init__(self, hyperparameters=None):
        self.archive = None
        super().__init__(hyperparameters)

    def validate_hyperparameters(self) -> None:
        params = self.hyperparameters
        archive_size = validate_positive_int(self.name, "archive_size", params["archive_size"], minimum=2)
        evaporation = validate_range(
            self.name, "evaporation", params["evaporation"], 0.0, 1.0, low_inclusive=False
        )
        q = validate_range(self.name, "q", params["q"], 0.0, float("inf"), low_inclusive=False, high_inclusive=False)
        self.xi = validate_range(
            self.name, "xi", params["xi"], 0.0, float("inf"), low_inclusive=False, high_inclusive=False
        )

        if self.archive is None:
            self.archive = PheromoneArchive(archive_size, evaporation, q)
        else:
            self.archive.capacity = archive_size
            self.archive.evaporation = evaporation
            self.archive.q = q

    def _next_generation(self, population: Population, context: StepContext) -> Population:
        self.archive.update(list(population.candidates))
        positions = self.archive.sample(len(population), self.xi, context)

        logger.debug(
            f"ACO generation {population.generation}: archive={len(self.archive)}, "
            f"max pheromone={self.archive.pheromone.max():.4f}"
        )

        return population.with_candidates(self._unevaluated(positions), generation=population.generation + 1)
