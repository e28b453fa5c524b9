"""
DE/PSO 混合協調器 (Hybrid DEPSO)

組合一個差分演化實例與一個粒子群實例，而非繼承兩者：
- split 模式：以任務隨機數產生的排列將種群依 split_ratio 切分，
  一部分套用 DE 規則（捐贈者取自整個種群），其餘套用 PSO 規則；
  所有新位置在同一批次中評估後依適應度合併
- alternate 模式：偶數世代套用 DE，奇數世代套用 PSO
"""

import logging
from collections.abc import Mapping
from dataclasses import replace
from typing import List, Sequence

import numpy as np

from .differential_evolution import DifferentialEvolution
from .exceptions import InvalidHyperparameterError, validate_choice, validate_range
from .models import AlgorithmKind, Candidate, Fitness, Population, is_better
from .particle_swarm import ParticleSwarm
from .strategy import Optimizer, StepContext

logger = logging.getLogger(__name__)


class HybridDEPSO(Optimizer):
    """DE/PSO 混合策略

    Attributes:
        de: 差分演化子策略
        pso: 粒子群子策略
        split_ratio: split 模式下套用 DE 的比例 (0, 1)
        mode: split 或 alternate
    """

    kind = AlgorithmKind.DEPSO
    MIN_POPULATION_SIZE = 4
    MODES = ("split", "alternate")
    DEFAULTS = {"de": {}, "pso": {}, "split_ratio": 0.5, "mode": "split"}

    def validate_hyperparameters(self) -> None:
        params = self.hyperparameters
        for name in ("de", "pso"):
            if not isinstance(params[name], Mapping):
                raise InvalidHyperparameterError(self.name, name, params[name], "a mapping of sub-strategy parameters")

        self.split_ratio = validate_range(
            self.name, "split_ratio", params["split_ratio"], 0.0, 1.0,
            low_inclusive=False, high_inclusive=False,
        )
        self.mode = validate_choice(self.name, "mode", params["mode"], self.MODES)
        self.de = DifferentialEvolution(params["de"])
        self.pso = ParticleSwarm(params["pso"])

    def split(self, size: int, rng: np.random.Generator):
        """以隨機排列切分索引，兩部分皆至少一個"""
        permutation = rng.permutation(size)
        de_count = min(max(1, int(round(size * self.split_ratio))), size - 1)
        de_indices = sorted(int(i) for i in permutation[:de_count])
        pso_indices = sorted(int(i) for i in permutation[de_count:])
        return de_indices, pso_indices

    @staticmethod
    def merge_particle(parent: Candidate, moved: Candidate, fitness: Fitness) -> Candidate:
        """移動後的粒子不劣於親代時取代之，否則親代保留新速度與個體最佳"""
        if is_better(parent.fitness, fitness):
            return replace(
                parent,
                velocity=moved.velocity,
                best_position=moved.best_position,
                best_fitness=moved.best_fitness,
            )
        return moved.with_fitness(fitness)

    def _move_particles(self, population: Population, indices: Sequence[int], context: StepContext):
        leader = population.best if population.best is not None else population.current_best()
        global_best = np.array(leader.position)
        particles = [self.pso.update_personal_best(population[i]) for i in indices]
        moved = [self.pso.move(particle, global_best, context) for particle in particles]
        return particles, moved

    def _next_generation(self, population: Population, context: StepContext) -> Population:
        if self.mode == "alternate":
            if population.generation % 2 == 0:
                return self.de._next_generation(population, context)
            de_indices: List[int] = []
            pso_indices = list(range(len(population)))
        else:
            de_indices, pso_indices = self.split(len(population), context.rng)

        trials = self.de.propose_trials(population, de_indices, context)
        particles, moved = self._move_particles(population, pso_indices, context)

        fitness = context.evaluate(trials + [m.position for m in moved])
        trial_fitness, moved_fitness = fitness[:len(trials)], fitness[len(trials):]

        next_candidates = list(population.candidates)
        for i, trial, f in zip(de_indices, trials, trial_fitness):
            next_candidates[i] = self.de.select(population[i], trial, f)
        for i, particle, m, f in zip(pso_indices, particles, moved, moved_fitness):
            next_candidates[i] = self.merge_particle(particle, m, f)

        logger.debug(
            f"DEPSO generation {population.generation} ({self.mode}): "
            f"{len(de_indices)} DE, {len(pso_indices)} PSO"
        )

        return population.with_candidates(next_candidates, generation=population.generation + 1)
