"""
灰狼優化 (Grey Wolf Optimizer)

以本世代最佳三者 alpha、beta、delta 作為領導者，
每隻狼朝三個領導者的拉力平均移動。係數 a 隨世代由 a_initial 線性遞減至 0。
"""

import numpy as np

from .exceptions import validate_range
from .models import AlgorithmKind, Population
from .strategy import Optimizer, StepContext


class GreyWolf(Optimizer):
    """灰狼優化策略"""

    kind = AlgorithmKind.GWO
    MIN_POPULATION_SIZE = 3
    DEFAULTS = {"a_initial": 2.0}

    def validate_hyperparameters(self) -> None:
        self.a_initial = validate_range(
            self.name, "a_initial", self.hyperparameters["a_initial"], 0.0, float("inf"),
            low_inclusive=False, high_inclusive=False,
        )

    def coefficient(self, context: StepContext) -> float:
        """目前世代的 a 值"""
        return self.a_initial * (1.0 - context.progress)

    def _next_generation(self, population: Population, context: StepContext) -> Population:
        ranked = population.ranked_indices()
        positions = population.positions()
        leaders = positions[ranked[:3]]

        a = self.coefficient(context)
        size, dimension = positions.shape
        moved = np.empty_like(positions)

        for i in range(size):
            x = positions[i]
            pulls = []
            for leader in leaders:
                A = 2.0 * a * context.rng.random(dimension) - a
                C = 2.0 * context.rng.random(dimension)
                distance = np.abs(C * leader - x)
                pulls.append(leader - A * distance)
            moved[i] = np.mean(pulls, axis=0)

        return population.with_candidates(
            self._unevaluated(context.repair(moved)),
            generation=population.generation + 1,
        )
