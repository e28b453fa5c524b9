"""
差分演化 (Differential Evolution)

DE/rand/1/bin：以兩個隨機成員的差向量擾動第三個成員產生突變向量，
再以二項式交叉產生試驗解，最後以貪婪選擇決定是否取代目標解。
"""

from dataclasses import replace
from typing import List, Sequence, Tuple

import numpy as np

from .exceptions import validate_range
from .models import AlgorithmKind, Candidate, Fitness, Population, is_better
from .strategy import Optimizer, StepContext


class DifferentialEvolution(Optimizer):
    """差分演化策略

    Attributes:
        F: 差分縮放因子 (0, 2]
        CR: 交叉機率 [0, 1]
    """

    kind = AlgorithmKind.DE
    MIN_POPULATION_SIZE = 4
    DEFAULTS = {"F": 0.8, "CR": 0.9}

    def validate_hyperparameters(self) -> None:
        self.F = validate_range(self.name, "F", self.hyperparameters["F"], 0.0, 2.0, low_inclusive=False)
        self.CR = validate_range(self.name, "CR", self.hyperparameters["CR"], 0.0, 1.0)

    def select_donors(self, target_index: int, pool_size: int, rng: np.random.Generator) -> Tuple[int, int, int]:
        """選擇三個互不相同且不等於目標的捐贈者索引"""
        choices = [i for i in range(pool_size) if i != target_index]
        r1, r2, r3 = rng.choice(choices, size=3, replace=False)
        return int(r1), int(r2), int(r3)

    def make_trial(
        self,
        target: np.ndarray,
        base: np.ndarray,
        difference_a: np.ndarray,
        difference_b: np.ndarray,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """建立試驗解

        突變向量 = base + F * (difference_a - difference_b)。
        二項式交叉以機率 CR 逐維採用突變向量，並強制至少一個維度 (j_rand)
        來自突變向量；CR = 0 時試驗解僅在該維度與目標不同。

        Args:
            target: 目標向量
            base: 基底向量 x_r1
            difference_a: 差向量第一項 x_r2
            difference_b: 差向量第二項 x_r3
            rng: 隨機數產生器

        Returns:
            試驗向量（尚未修正邊界）
        """
        mutant = base + self.F * (difference_a - difference_b)
        dimension = target.size
        mask = rng.random(dimension) < self.CR
        mask[rng.integers(dimension)] = True
        return np.where(mask, mutant, target)

    def propose_trials(
        self,
        population: Population,
        indices: Sequence[int],
        context: StepContext,
    ) -> List[np.ndarray]:
        """為指定的目標索引建立試驗解，捐贈者取自整個種群"""
        positions = population.positions()
        trials = []
        for i in indices:
            r1, r2, r3 = self.select_donors(i, len(population), context.rng)
            trial = self.make_trial(positions[i], positions[r1], positions[r2], positions[r3], context.rng)
            trials.append(context.repair(trial))
        return trials

    @staticmethod
    def select(target: Candidate, trial: np.ndarray, trial_fitness: Fitness) -> Candidate:
        """貪婪選擇：試驗解不劣於目標時取代之

        取代時保留目標的速度與個體最佳。
        """
        if is_better(target.fitness, trial_fitness):
            return target
        return replace(target, position=trial, fitness=trial_fitness)

    def _next_generation(self, population: Population, context: StepContext) -> Population:
        indices = range(len(population))
        trials = self.propose_trials(population, indices, context)
        trial_fitness = context.evaluate(trials)

        next_candidates = [
            self.select(population[i], trial, fitness)
            for i, trial, fitness in zip(indices, trials, trial_fitness)
        ]
        return population.with_candidates(next_candidates, generation=population.generation + 1)
