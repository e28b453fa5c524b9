"""
粒子群優化 (Particle Swarm Optimization)

每個粒子攜帶速度與個體最佳位置。速度由慣性、認知項（朝個體最佳）
與社會項（朝全域最佳）組成，位置加上速度後修正至邊界內。
"""

from dataclasses import replace

import numpy as np

from .exceptions import validate_range
from .models import AlgorithmKind, Candidate, Population, is_better
from .strategy import Optimizer, StepContext


class ParticleSwarm(Optimizer):
    """粒子群優化策略

    Attributes:
        inertia: 慣性權重 [0, 1.2]
        cognitive: 認知係數 [0, 4]
        social: 社會係數 [0, 4]
        velocity_clamp: 最大速度（相對於邊界範圍的比例）(0, 1]
    """

    kind = AlgorithmKind.PSO
    MIN_POPULATION_SIZE = 2
    DEFAULTS = {"inertia": 0.7, "cognitive": 1.5, "social": 1.5, "velocity_clamp": 0.5}

    def validate_hyperparameters(self) -> None:
        self.inertia = validate_range(self.name, "inertia", self.hyperparameters["inertia"], 0.0, 1.2)
        self.cognitive = validate_range(self.name, "cognitive", self.hyperparameters["cognitive"], 0.0, 4.0)
        self.social = validate_range(self.name, "social", self.hyperparameters["social"], 0.0, 4.0)
        self.velocity_clamp = validate_range(
            self.name, "velocity_clamp", self.hyperparameters["velocity_clamp"], 0.0, 1.0,
            low_inclusive=False,
        )

    @staticmethod
    def update_personal_best(candidate: Candidate) -> Candidate:
        """以本世代適應度更新個體最佳"""
        if candidate.best_fitness is None or is_better(candidate.fitness, candidate.best_fitness):
            return replace(candidate, best_position=candidate.position, best_fitness=candidate.fitness)
        return candidate

    def move(self, particle: Candidate, global_best: np.ndarray, context: StepContext) -> Candidate:
        """移動單一粒子

        Args:
            particle: 已更新個體最佳的粒子
            global_best: 全域最佳位置
            context: 執行環境

        Returns:
            新位置、尚未評估的粒子（保留速度與個體最佳）
        """
        v_max = self.velocity_clamp * context.bounds.span
        dimension = particle.dimension

        if particle.velocity is None:
            velocity = context.rng.uniform(-v_max, v_max)
        else:
            velocity = np.array(particle.velocity)

        personal_best = particle.best_position if particle.best_position is not None else particle.position
        r1 = context.rng.random(dimension)
        r2 = context.rng.random(dimension)

        velocity = (
            self.inertia * velocity
            + self.cognitive * r1 * (personal_best - particle.position)
            + self.social * r2 * (global_best - particle.position)
        )
        velocity = np.clip(velocity, -v_max, v_max)
        position = context.repair(particle.position + velocity)

        return Candidate(
            position=position,
            velocity=velocity,
            best_position=personal_best,
            best_fitness=particle.best_fitness if particle.best_fitness is not None else particle.fitness,
        )

    def _next_generation(self, population: Population, context: StepContext) -> Population:
        particles = [self.update_personal_best(c) for c in population.candidates]
        leader = population.best if population.best is not None else population.current_best()
        global_best = np.array(leader.position)

        moved = [self.move(particle, global_best, context) for particle in particles]
        return population.with_candidates(moved, generation=population.generation + 1)
