"""
遺傳演算法 (Genetic Algorithm)

組合選擇、交叉與突變算子產生下一代：
1. 精英保留：最佳 elite_count 個候選解原封不動進入下一代（保留適應度）
2. 選擇親代並交叉產生子代
3. 對子代執行高斯突變並修正邊界
"""

import logging

from .crossover import CrossoverOperator
from .exceptions import InvalidDescriptorError, validate_choice, validate_positive_int, validate_range
from .models import AlgorithmKind, Candidate, Population
from .mutation import MutationOperator
from .selection import SelectionOperator
from .strategy import Optimizer, StepContext

logger = logging.getLogger(__name__)


class GeneticAlgorithm(Optimizer):
    """遺傳演算法策略

    Attributes:
        selection: 選擇算子
        crossover: 交叉算子
        mutation: 突變算子
        elite_count: 精英數量
    """

    kind = AlgorithmKind.GA
    MIN_POPULATION_SIZE = 2
    DEFAULTS = {
        "selection": "tournament",
        "tournament_size": 3,
        "crossover": "blend",
        "crossover_rate": 0.8,
        "blend_alpha": 0.5,
        "mutation_rate": 0.1,
        "mutation_strength": 0.1,
        "elite_count": 1,
    }

    def validate_hyperparameters(self) -> None:
        params = self.hyperparameters
        method = validate_choice(self.name, "selection", params["selection"], SelectionOperator.METHODS)
        tournament_size = validate_positive_int(self.name, "tournament_size", params["tournament_size"])
        crossover = validate_choice(self.name, "crossover", params["crossover"], CrossoverOperator.METHODS)
        crossover_rate = validate_range(self.name, "crossover_rate", params["crossover_rate"], 0.0, 1.0)
        alpha = validate_range(self.name, "blend_alpha", params["blend_alpha"], 0.0, 1.0)
        mutation_rate = validate_range(self.name, "mutation_rate", params["mutation_rate"], 0.0, 1.0)
        mutation_strength = validate_range(
            self.name, "mutation_strength", params["mutation_strength"], 0.0, float("inf"),
            low_inclusive=False, high_inclusive=False,
        )
        self.elite_count = validate_positive_int(self.name, "elite_count", params["elite_count"], minimum=0)

        self.selection = SelectionOperator(tournament_size=tournament_size, method=method)
        self.crossover = CrossoverOperator(crossover_rate=crossover_rate, method=crossover, alpha=alpha)
        self.mutation = MutationOperator(mutation_rate=mutation_rate, mutation_strength=mutation_strength)

    def validate_population_size(self, population_size: int) -> None:
        super().validate_population_size(population_size)
        if self.elite_count >= population_size:
            raise InvalidDescriptorError(
                f"elite_count ({self.elite_count}) must be smaller than the population size ({population_size})",
                field="hyperparameters.elite_count",
            )

    def _next_generation(self, population: Population, context: StepContext) -> Population:
        size = len(population)
        elite_count = min(self.elite_count, size - 1)
        elites = self.selection.get_elite(population, elite_count)

        offspring_count = size - len(elites)
        parents = self.selection.select_parents(population, max(2, offspring_count), context.rng)
        children = self.crossover.crossover_population(parents, offspring_count, context.rng)
        children = self.mutation.mutate_population(
            children, context.bounds, context.rng, context.boundary_handling
        )

        logger.debug(
            f"GA generation {population.generation}: {len(elites)} elites, {len(children)} offspring"
        )

        next_candidates = list(elites) + [Candidate(position=child) for child in children]
        return population.with_candidates(next_candidates, generation=population.generation + 1)
