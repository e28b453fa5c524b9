"""
Tests for the algorithm strategies, the GA operators and the registry.
"""

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st

from swarm_engine.optimization.ant_colony import AntColony, PheromoneArchive
from swarm_engine.optimization.crossover import CrossoverOperator
from swarm_engine.optimization.differential_evolution import DifferentialEvolution
from swarm_engine.optimization.exceptions import (
    DimensionMismatchError,
    InvalidDescriptorError,
    InvalidHyperparameterError,
)
from swarm_engine.optimization.genetic import GeneticAlgorithm
from swarm_engine.optimization.grey_wolf import GreyWolf
from swarm_engine.optimization.hybrid import HybridDEPSO
from swarm_engine.optimization.models import (
    AlgorithmKind,
    BoundaryHandling,
    Bounds,
    Candidate,
    JobDescriptor,
    Population,
)
from swarm_engine.optimization.mutation import MutationOperator
from swarm_engine.optimization.objective import CallableObjective, benchmark_objective, sphere
from swarm_engine.optimization.particle_swarm import ParticleSwarm
from swarm_engine.optimization.population import PopulationEvaluator, PopulationGenerator
from swarm_engine.optimization.registry import (
    OPTIMIZERS,
    create_optimizer,
    minimum_population_size,
    validate_descriptor,
)
from swarm_engine.optimization.selection import SelectionOperator
from swarm_engine.optimization.strategy import StepContext


def _evaluated_population(objective, size, seed):
    population = PopulationGenerator(objective.bounds, size).initialize(seed=seed)
    return PopulationEvaluator(objective).evaluate(population)


def _context(objective, seed=0, generation=0, max_generations=10, mode=BoundaryHandling.CLIP):
    evaluator = PopulationEvaluator(objective)
    return StepContext(
        bounds=objective.bounds,
        rng=np.random.default_rng(seed),
        evaluate=evaluator.evaluate_positions,
        generation=generation,
        max_generations=max_generations,
        boundary_handling=mode,
    )


class TestDifferentialEvolution:

    @given(seed=st.integers(min_value=0, max_value=2**32 - 1),
           dimension=st.integers(min_value=1, max_value=8))
    @settings(max_examples=100)
    def test_zero_crossover_rate_changes_one_dimension(self, seed, dimension):
        """With CR=0 the trial equals the target except for the forced dimension."""
        de = DifferentialEvolution({"F": 0.8, "CR": 0.0})
        rng = np.random.default_rng(seed)
        target = rng.uniform(-1, 1, dimension)
        base, a, b = (rng.uniform(-1, 1, dimension) for _ in range(3))
        trial = de.make_trial(target, base, a, b, rng)
        assert int(np.sum(trial != target)) <= 1
        assert int(np.sum(trial == target)) >= dimension - 1

    def test_full_crossover_rate_takes_mutant(self):
        de = DifferentialEvolution({"F": 0.5, "CR": 1.0})
        rng = np.random.default_rng(0)
        target = np.zeros(3)
        trial = de.make_trial(target, np.ones(3), np.full(3, 2.0), np.zeros(3), rng)
        np.testing.assert_allclose(trial, np.full(3, 2.0))

    @given(seed=st.integers(min_value=0, max_value=10_000), size=st.integers(min_value=4, max_value=20))
    @settings(max_examples=100)
    def test_donors_distinct_and_not_target(self, seed, size):
        de = DifferentialEvolution()
        rng = np.random.default_rng(seed)
        target = int(rng.integers(size))
        donors = de.select_donors(target, size, rng)
        assert len(set(donors)) == 3
        assert target not in donors

    def test_select_keeps_target_only_when_strictly_better(self):
        target = Candidate(position=[0.0], fitness=1.0)
        assert DifferentialEvolution.select(target, np.array([1.0]), 2.0) is target
        replaced = DifferentialEvolution.select(target, np.array([1.0]), 1.0)
        assert replaced.fitness == 1.0
        assert replaced.position[0] == 1.0

    def test_select_carries_particle_state(self):
        target = Candidate(position=[0.0], fitness=4.0, velocity=[0.5], best_position=[0.2], best_fitness=0.04)
        replaced = DifferentialEvolution.select(target, np.array([1.0]), 1.0)
        np.testing.assert_array_equal(replaced.velocity, [0.5])
        np.testing.assert_array_equal(replaced.best_position, [0.2])
        assert replaced.best_fitness == 0.04

    def test_step_never_worsens_any_slot(self):
        objective = benchmark_objective("rastrigin", 4)
        population = _evaluated_population(objective, 12, seed=3)
        nxt = DifferentialEvolution().step(population, _context(objective, seed=3))
        assert nxt.generation == 1
        assert nxt.is_fully_evaluated
        for before, after in zip(population, nxt):
            assert after.fitness <= before.fitness

    @pytest.mark.parametrize("params", [{"F": 0.0}, {"F": 2.5}, {"CR": -0.1}, {"CR": 1.1}, {"F": "x"}])
    def test_invalid_hyperparameters(self, params):
        with pytest.raises(InvalidHyperparameterError):
            DifferentialEvolution(params)

    def test_unknown_hyperparameter(self):
        with pytest.raises(InvalidHyperparameterError, match="mutation_factor"):
            DifferentialEvolution({"mutation_factor": 0.5})


class TestParticleSwarm:

    def test_personal_best_updates_only_when_better(self):
        particle = Candidate(position=[1.0], fitness=5.0, best_position=[0.0], best_fitness=2.0)
        assert ParticleSwarm.update_personal_best(particle) is particle
        better = Candidate(position=[1.0], fitness=1.0, best_position=[0.0], best_fitness=2.0)
        updated = ParticleSwarm.update_personal_best(better)
        assert updated.best_fitness == 1.0
        np.testing.assert_array_equal(updated.best_position, [1.0])

    def test_velocity_is_clamped(self):
        objective = benchmark_objective("sphere", 3)
        pso = ParticleSwarm({"velocity_clamp": 0.1, "inertia": 1.2})
        population = _evaluated_population(objective, 10, seed=1)
        nxt = pso.step(population, _context(objective, seed=1))
        v_max = 0.1 * objective.bounds.span
        for particle in nxt:
            assert np.all(np.abs(particle.velocity) <= v_max + 1e-12)
            assert particle.best_position is not None
            assert not particle.is_evaluated

    @pytest.mark.parametrize("params", [
        {"inertia": 1.3}, {"cognitive": -1}, {"social": 4.5}, {"velocity_clamp": 0.0},
    ])
    def test_invalid_hyperparameters(self, params):
        with pytest.raises(InvalidHyperparameterError):
            ParticleSwarm(params)


class TestGeneticOperators:

    def test_tournament_picks_best_when_whole_population_competes(self):
        population = Population(candidates=tuple(
            Candidate(position=[float(i)], fitness=f) for i, f in enumerate([3.0, 0.5, 2.0])
        ))
        selection = SelectionOperator(tournament_size=3)
        assert selection.tournament_select(population, np.random.default_rng(0)) is population[1]

    def test_roulette_never_picks_infinite_fitness(self):
        population = Population(candidates=(
            Candidate(position=[0.0], fitness=float("inf")),
            Candidate(position=[1.0], fitness=1.0),
            Candidate(position=[2.0], fitness=2.0),
        ))
        selection = SelectionOperator(method="roulette")
        rng = np.random.default_rng(5)
        picks = [selection.roulette_select(population, rng) for _ in range(50)]
        assert all(p is not population[0] for p in picks)

    def test_elite_is_top_k(self):
        population = Population(candidates=tuple(
            Candidate(position=[float(i)], fitness=f) for i, f in enumerate([3.0, 0.5, 2.0, 0.1])
        ))
        elite = SelectionOperator().get_elite(population, 2)
        assert [c.fitness for c in elite] == [0.1, 0.5]

    @given(seed=st.integers(min_value=0, max_value=10_000), length=st.integers(min_value=1, max_value=10))
    @settings(max_examples=100)
    def test_point_crossover_preserves_gene_values(self, seed, length):
        rng = np.random.default_rng(seed)
        p1 = rng.uniform(-1, 1, length)
        p2 = rng.uniform(-1, 1, length)
        for method in ("single_point", "two_point"):
            c1, c2 = CrossoverOperator(1.0, method=method).crossover(p1, p2, rng)
            for i in range(length):
                assert {c1[i], c2[i]} == {p1[i], p2[i]}

    def test_zero_rate_copies_parents(self):
        p1, p2 = np.zeros(3), np.ones(3)
        c1, c2 = CrossoverOperator(0.0).crossover(p1, p2, np.random.default_rng(0))
        np.testing.assert_array_equal(c1, p1)
        np.testing.assert_array_equal(c2, p2)

    def test_mutation_stays_in_bounds(self):
        bounds = Bounds.uniform(0, 1, 5)
        mutation = MutationOperator(mutation_rate=1.0, mutation_strength=5.0)
        rng = np.random.default_rng(2)
        for _ in range(20):
            assert bounds.contains(mutation.gaussian_mutate(np.full(5, 0.5), bounds, rng))

    def test_zero_mutation_rate_is_identity(self):
        bounds = Bounds.uniform(0, 1, 3)
        position = np.array([0.1, 0.2, 0.3])
        mutated = MutationOperator(mutation_rate=0.0).gaussian_mutate(position, bounds, np.random.default_rng(0))
        np.testing.assert_array_equal(mutated, position)

    def test_invalid_operator_settings(self):
        with pytest.raises(ValueError):
            SelectionOperator(tournament_size=0)
        with pytest.raises(ValueError):
            CrossoverOperator(crossover_rate=1.5)
        with pytest.raises(ValueError):
            MutationOperator(mutation_strength=0)


class TestGeneticAlgorithm:

    def test_elites_carried_unchanged(self):
        objective = benchmark_objective("sphere", 3)
        population = _evaluated_population(objective, 10, seed=4)
        ga = GeneticAlgorithm({"elite_count": 2})
        nxt = ga.step(population, _context(objective, seed=4))
        ranked = population.ranked_indices()
        assert nxt[0] is population[ranked[0]]
        assert nxt[1] is population[ranked[1]]
        assert all(not c.is_evaluated for c in nxt.candidates[2:])
        assert len(nxt) == len(population)

    def test_elite_count_must_be_below_population_size(self):
        with pytest.raises(InvalidDescriptorError, match="elite_count"):
            GeneticAlgorithm({"elite_count": 5}).validate_population_size(5)

    @pytest.mark.parametrize("params", [
        {"selection": "rank"}, {"crossover": "uniform"}, {"crossover_rate": 2},
        {"mutation_rate": -0.1}, {"mutation_strength": 0}, {"elite_count": -1},
    ])
    def test_invalid_hyperparameters(self, params):
        with pytest.raises(InvalidHyperparameterError):
            GeneticAlgorithm(params)


class TestAntColony:

    def test_archive_is_bounded_and_sorted(self):
        archive = PheromoneArchive(capacity=3, evaporation=0.5, q=0.2)
        archive.update([Candidate(position=[float(i)], fitness=float(f)) for i, f in enumerate([5, 1, 4, 2, 3])])
        assert len(archive) == 3
        assert [e.fitness for e in archive.entries] == [1.0, 2.0, 3.0]
        assert archive.pheromone[0] > archive.pheromone[1] > archive.pheromone[2]

    def test_pheromone_evaporates(self):
        archive = PheromoneArchive(capacity=2, evaporation=0.5, q=0.2)
        archive.update([Candidate(position=[0.0], fitness=1.0), Candidate(position=[1.0], fitness=2.0)])
        before = archive.pheromone.copy()
        archive.update([])
        expected = before * 0.5 + np.array([archive.rank_weight(0), archive.rank_weight(1)])
        np.testing.assert_allclose(archive.pheromone, expected)

    def test_archive_ties_keep_older_entry(self):
        archive = PheromoneArchive(capacity=1, evaporation=0.1, q=0.2)
        old = Candidate(position=[0.0], fitness=1.0)
        archive.update([old])
        archive.update([Candidate(position=[1.0], fitness=1.0)])
        assert archive.entries[0] is old

    def test_archive_persists_across_steps(self):
        objective = benchmark_objective("sphere", 2)
        aco = AntColony({"archive_size": 4})
        context = _context(objective, seed=8)
        population = _evaluated_population(objective, 6, seed=8)
        nxt = aco.step(population, context)
        assert len(aco.archive) == 4
        best_before = aco.archive.entries[0].fitness
        nxt = PopulationEvaluator(objective).evaluate(nxt)
        aco.step(nxt, context)
        assert aco.archive.entries[0].fitness <= best_before

    @pytest.mark.parametrize("params", [{"archive_size": 1}, {"evaporation": 0}, {"q": 0}, {"xi": -1}])
    def test_invalid_hyperparameters(self, params):
        with pytest.raises(InvalidHyperparameterError):
            AntColony(params)


class TestGreyWolf:

    def test_coefficient_decays_linearly(self):
        objective = benchmark_objective("sphere", 2)
        gwo = GreyWolf()
        assert gwo.coefficient(_context(objective, generation=0, max_generations=11)) == pytest.approx(2.0)
        assert gwo.coefficient(_context(objective, generation=5, max_generations=11)) == pytest.approx(1.0)
        assert gwo.coefficient(_context(objective, generation=10, max_generations=11)) == pytest.approx(0.0)

    def test_collapsed_leaders_pull_everyone_in(self):
        objective = benchmark_objective("sphere", 2)
        candidates = tuple(Candidate(position=[1.0, 1.0], fitness=2.0) for _ in range(3)) + (
            Candidate(position=[4.0, -4.0], fitness=32.0),
        )
        population = Population(candidates=candidates)
        # a = 0 on the last generation, so every wolf lands on the leaders
        nxt = GreyWolf().step(population, _context(objective, generation=9, max_generations=10))
        for wolf in nxt:
            np.testing.assert_allclose(wolf.position, [1.0, 1.0])


class TestHybridDEPSO:

    @given(size=st.integers(min_value=4, max_value=40),
           ratio=st.floats(min_value=0.01, max_value=0.99),
           seed=st.integers(min_value=0, max_value=10_000))
    @settings(max_examples=100)
    def test_split_partitions_population(self, size, ratio, seed):
        hybrid = HybridDEPSO({"split_ratio": ratio})
        de_part, pso_part = hybrid.split(size, np.random.default_rng(seed))
        assert de_part and pso_part
        assert sorted(de_part + pso_part) == list(range(size))

    def test_step_returns_evaluated_population_never_worse(self):
        objective = benchmark_objective("rastrigin", 3)
        population = _evaluated_population(objective, 10, seed=11)
        nxt = HybridDEPSO({"de": {"F": 0.6}, "pso": {"inertia": 0.5}}).step(
            population, _context(objective, seed=11)
        )
        assert nxt.is_fully_evaluated
        for before, after in zip(population, nxt):
            assert after.fitness <= before.fitness

    def test_alternate_mode_uses_de_on_even_generations(self):
        objective = benchmark_objective("sphere", 2)
        population = _evaluated_population(objective, 8, seed=2)
        nxt = HybridDEPSO({"mode": "alternate"}).step(population, _context(objective, seed=2))
        assert all(c.velocity is None for c in nxt)
        after = HybridDEPSO({"mode": "alternate"}).step(nxt, _context(objective, seed=2))
        assert all(c.velocity is not None for c in after)

    def test_alternate_mode_keeps_velocities_through_de_generation(self):
        objective = benchmark_objective("sphere", 2)
        hybrid = HybridDEPSO({"mode": "alternate"})
        population = _evaluated_population(objective, 8, seed=4)
        for generation in range(3):
            population = hybrid.step(population, _context(objective, seed=4, generation=generation))
        assert population.generation == 3
        assert all(c.velocity is not None for c in population)
        assert all(c.best_position is not None for c in population)

    def test_merge_keeps_parent_but_updates_velocity(self):
        parent = Candidate(position=[0.0], fitness=1.0, best_position=[0.0], best_fitness=1.0)
        moved = Candidate(position=[1.0], velocity=[1.0], best_position=[0.0], best_fitness=1.0)
        merged = HybridDEPSO.merge_particle(parent, moved, 3.0)
        assert merged.fitness == 1.0
        np.testing.assert_array_equal(merged.velocity, [1.0])

    @pytest.mark.parametrize("params", [
        {"split_ratio": 0.0}, {"split_ratio": 1.0}, {"mode": "random"},
        {"de": {"F": 3.0}}, {"pso": {"social": 9}}, {"de": 0.5},
    ])
    def test_invalid_hyperparameters(self, params):
        with pytest.raises(InvalidHyperparameterError):
            HybridDEPSO(params)


class TestStrategyContract:
    """Every strategy keeps the population size and stays within bounds."""

    @pytest.mark.parametrize("kind", list(AlgorithmKind))
    @given(seed=st.integers(min_value=0, max_value=10_000))
    @settings(max_examples=20, deadline=None)
    def test_step_preserves_size_and_bounds(self, kind, seed):
        objective = benchmark_objective("rastrigin", 3)
        size = max(6, minimum_population_size(kind))
        optimizer = create_optimizer(kind)
        population = _evaluated_population(objective, size, seed)
        for mode in BoundaryHandling:
            context = _context(objective, seed=seed, mode=mode)
            nxt = optimizer.step(population, context)
            assert len(nxt) == size
            assert nxt.generation == population.generation + 1
            for candidate in nxt:
                assert objective.bounds.contains(candidate.position)

    def test_step_requires_evaluated_population(self):
        objective = benchmark_objective("sphere", 2)
        population = PopulationGenerator(objective.bounds, 5).initialize(seed=0)
        with pytest.raises(ValueError, match="evaluated"):
            DifferentialEvolution().step(population, _context(objective))

    def test_step_rejects_dimension_mismatch(self):
        objective = benchmark_objective("sphere", 2)
        population = Population(candidates=tuple(Candidate(position=[0.0, 0.0, 0.0], fitness=0.0) for _ in range(5)))
        with pytest.raises(DimensionMismatchError):
            ParticleSwarm().step(population, _context(objective))

    def test_step_revalidates_hyperparameters(self):
        objective = benchmark_objective("sphere", 2)
        population = _evaluated_population(objective, 5, seed=0)
        de = DifferentialEvolution()
        de.hyperparameters["F"] = 7.0
        with pytest.raises(InvalidHyperparameterError):
            de.step(population, _context(objective))


class TestRegistry:

    def test_every_kind_registered(self):
        assert set(OPTIMIZERS) == set(AlgorithmKind)

    @pytest.mark.parametrize("kind,minimum", [
        ("de", 4), ("pso", 2), ("aco", 2), ("ga", 2), ("gwo", 3), ("woa", 2), ("depso", 4),
    ])
    def test_minimum_population_sizes(self, kind, minimum):
        assert minimum_population_size(kind) == minimum

    def _descriptor(self, **overrides):
        bounds = Bounds.uniform(-5, 5, 2)
        fields = dict(
            algorithm="de",
            objective=CallableObjective(sphere, bounds),
            bounds=bounds,
            population_size=10,
        )
        fields.update(overrides)
        return JobDescriptor(**fields)

    def test_valid_descriptor_returns_optimizer(self):
        assert isinstance(validate_descriptor(self._descriptor()), DifferentialEvolution)

    def test_population_below_minimum(self):
        with pytest.raises(InvalidDescriptorError, match="minimum"):
            validate_descriptor(self._descriptor(algorithm="pso", population_size=1))

    def test_hyperparameter_error_becomes_descriptor_error(self):
        with pytest.raises(InvalidDescriptorError) as info:
            validate_descriptor(self._descriptor(hyperparameters={"F": 5}))
        assert info.value.field == "hyperparameters.F"
        assert isinstance(info.value.__cause__, InvalidHyperparameterError)

    def test_objective_dimension_must_match_bounds(self):
        objective = benchmark_objective("sphere", 3)
        with pytest.raises(InvalidDescriptorError, match="dimension"):
            validate_descriptor(self._descriptor(objective=objective))

    def test_plain_callable_objective_accepted(self):
        assert validate_descriptor(self._descriptor(objective=sphere)) is not None

    def test_non_callable_objective_rejected(self):
        with pytest.raises(InvalidDescriptorError, match="callable"):
            validate_descriptor(self._descriptor(objective=42))

    def test_bounds_outside_objective_domain_rejected(self):
        objective = CallableObjective(sphere, Bounds.uniform(0, 1, 2))
        with pytest.raises(InvalidDescriptorError) as info:
            validate_descriptor(self._descriptor(objective=objective))
        assert info.value.field == "bounds"

    def test_bounds_inside_objective_domain_accepted(self):
        objective = CallableObjective(sphere, Bounds.uniform(-10, 10, 2))
        assert validate_descriptor(self._descriptor(objective=objective)) is not None

    def test_numpy_integer_population_size(self):
        descriptor = self._descriptor(population_size=np.int64(10))
        assert validate_descriptor(descriptor) is not None
        assert type(descriptor.population_size) is int
        with pytest.raises(InvalidDescriptorError, match="minimum"):
            validate_descriptor(self._descriptor(population_size=np.int64(2)))

    def test_numpy_integer_hyperparameters(self):
        aco = create_optimizer("aco", {"archive_size": np.int64(5)})
        assert aco.archive.capacity == 5
        ga = create_optimizer("ga", {"elite_count": np.int64(2)})
        assert ga.elite_count == 2
        assert type(ga.elite_count) is int

    def test_boolean_population_size_rejected(self):
        with pytest.raises(InvalidDescriptorError):
            validate_descriptor(self._descriptor(population_size=True))
