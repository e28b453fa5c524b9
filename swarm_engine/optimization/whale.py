"""
鯨魚優化 (Whale Optimization Algorithm)

每隻鯨魚以 0.5 機率執行收縮包圍（|A| < 1 時朝最佳解，否則朝隨機鯨魚探索），
或以對數螺旋繞最佳解移動。
"""

import math

import numpy as np

from .exceptions import validate_range
from .models import AlgorithmKind, Population
from .strategy import Optimizer, StepContext


class Whale(Optimizer):
    """鯨魚優化策略

    Attributes:
        spiral_b: 對數螺旋形狀常數
        a_initial: 係數 a 的初始值（線性遞減至 0）
    """

    kind = AlgorithmKind.WOA
    MIN_POPULATION_SIZE = 2
    DEFAULTS = {"spiral_b": 1.0, "a_initial": 2.0}

    def validate_hyperparameters(self) -> None:
        self.spiral_b = validate_range(
            self.name, "spiral_b", self.hyperparameters["spiral_b"], 0.0, float("inf"),
            low_inclusive=False, high_inclusive=False,
        )
        self.a_initial = validate_range(
            self.name, "a_initial", self.hyperparameters["a_initial"], 0.0, float("inf"),
            low_inclusive=False, high_inclusive=False,
        )

    def _next_generation(self, population: Population, context: StepContext) -> Population:
        leader = population.best if population.best is not None else population.current_best()
        best = np.array(leader.position)
        positions = population.positions()
        size, dimension = positions.shape
        a = self.a_initial * (1.0 - context.progress)
        moved = np.empty_like(positions)

        for i in range(size):
            x = positions[i]
            if context.rng.random() < 0.5:
                A = 2.0 * a * context.rng.random(dimension) - a
                C = 2.0 * context.rng.random(dimension)
                if np.all(np.abs(A) < 1.0):
                    target = best
                else:
                    target = positions[int(context.rng.integers(size))]
                moved[i] = target - A * np.abs(C * target - x)
            else:
                l = context.rng.uniform(-1.0, 1.0)
                distance = np.abs(best - x)
                moved[i] = distance * math.exp(self.spiral_b * l) * math.cos(2.0 * math.pi * l) + best

        return population.with_candidates(
            self._unevaluated(context.repair(moved)),
            generation=population.generation + 1,
        )
