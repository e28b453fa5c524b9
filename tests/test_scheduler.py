"""
Tests for the generation controller and the job scheduler.

Covers the job state machine, termination rules, reproducibility,
cooperative cancellation, progress subscriptions and the terminal-time
agent profile update.
"""

import logging
import math
import time

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st

from swarm_engine.agents.progression import AgentProfile, InMemoryProfileStore, ProgressionPolicy
from swarm_engine.config import EngineConfig
from swarm_engine.optimization.exceptions import (
    EvaluationFailedError,
    InvalidDescriptorError,
    JobNotFoundError,
)
from swarm_engine.optimization.generation import GenerationController, improvement_between, run_job
from swarm_engine.optimization.models import (
    WORST_FITNESS,
    AlgorithmKind,
    Bounds,
    JobDescriptor,
    ProgressSnapshot,
    RunState,
    TerminationPolicy,
)
from swarm_engine.optimization.objective import CallableObjective, ObjectiveFunction, benchmark_objective, sphere
from swarm_engine.optimization.registry import create_optimizer
from swarm_engine.optimization.scheduler import JobHandle, JobScheduler, ProgressFeed


FAST_CONFIG = EngineConfig(
    max_concurrent_jobs=2,
    evaluation_workers=2,
    evaluation_retries=1,
    retry_backoff_seconds=0,
)


class AlwaysFailingObjective(ObjectiveFunction):
    def evaluate(self, candidate):
        raise EvaluationFailedError("service unavailable")


class SlowSphere(ObjectiveFunction):
    def evaluate(self, candidate):
        time.sleep(0.001)
        return sphere(candidate)


def make_descriptor(algorithm="de", dimension=2, population_size=20, max_generations=30, seed=42, **kwargs):
    objective = kwargs.pop("objective", None) or benchmark_objective("sphere", dimension)
    termination = kwargs.pop("termination", None) or TerminationPolicy(max_generations=max_generations)
    return JobDescriptor(
        algorithm=algorithm,
        objective=objective,
        bounds=objective.bounds,
        population_size=population_size,
        termination=termination,
        seed=seed,
        **kwargs,
    )


class TestGenerationController:

    def test_sphere_de_converges(self):
        """Sphere 2-D, population 20, DE F=0.8 CR=0.9, 50 generations."""
        descriptor = make_descriptor(
            hyperparameters={"F": 0.8, "CR": 0.9}, max_generations=50, seed=2024,
        )
        result = run_job(descriptor, FAST_CONFIG)
        assert result.state is RunState.MAX_GENERATIONS_REACHED
        assert result.generations == 50
        assert result.best_fitness < 1e-3
        again = run_job(descriptor, FAST_CONFIG)
        assert again.history == result.history
        np.testing.assert_array_equal(again.best.position, result.best.position)

    @pytest.mark.parametrize("algorithm", [kind.value for kind in AlgorithmKind])
    def test_fixed_seed_is_reproducible(self, algorithm):
        descriptor = make_descriptor(algorithm=algorithm, population_size=8, max_generations=8, seed=7)
        first = run_job(descriptor, FAST_CONFIG)
        second = run_job(descriptor, EngineConfig(evaluation_workers=4, retry_backoff_seconds=0))
        assert first.history == second.history
        np.testing.assert_array_equal(first.best.position, second.best.position)
        np.testing.assert_array_equal(first.final_population.positions(), second.final_population.positions())

    @pytest.mark.parametrize("algorithm", [kind.value for kind in AlgorithmKind])
    def test_history_non_increasing_and_bounded(self, algorithm):
        descriptor = make_descriptor(algorithm=algorithm, dimension=3, population_size=10, max_generations=15)
        seen = []
        controller = GenerationController(
            descriptor,
            config=FAST_CONFIG,
            progress_callback=lambda snapshot: seen.append(controller.state.population),
        )
        result = controller.run(publish_terminal=False)
        assert all(b <= a for a, b in zip(result.history, result.history[1:]))
        for population in seen:
            assert len(population) == 10
            for candidate in population:
                assert descriptor.bounds.contains(candidate.position)

    def test_target_fitness_converges(self):
        descriptor = make_descriptor(termination=TerminationPolicy(max_generations=500, target_fitness=1e-2))
        result = run_job(descriptor, FAST_CONFIG)
        assert result.state is RunState.CONVERGED
        assert result.best_fitness <= 1e-2
        assert result.generations < 500

    def test_stagnation(self):
        flat = CallableObjective(lambda x: 1.0, Bounds.uniform(-1, 1, 2))
        descriptor = make_descriptor(
            objective=flat,
            termination=TerminationPolicy(max_generations=100, stagnation_window=5),
        )
        result = run_job(descriptor, FAST_CONFIG)
        assert result.state is RunState.STAGNATED
        assert result.generations == 6

    def test_always_failing_objective_non_strict(self):
        bounds = Bounds.uniform(-1, 1, 2)
        descriptor = make_descriptor(objective=AlwaysFailingObjective(bounds), population_size=6, max_generations=3)
        result = run_job(descriptor, FAST_CONFIG)
        assert result.state is RunState.MAX_GENERATIONS_REACHED
        assert all(c.fitness == WORST_FITNESS for c in result.final_population)
        assert result.best_fitness == WORST_FITNESS
        assert result.failed_evaluations == result.evaluations > 0

    def test_strict_evaluation_fails_job(self):
        bounds = Bounds.uniform(-1, 1, 2)
        descriptor = make_descriptor(objective=AlwaysFailingObjective(bounds), population_size=6)
        config = EngineConfig(strict_evaluation=True, evaluation_retries=0, retry_backoff_seconds=0)
        result = run_job(descriptor, config)
        assert result.state is RunState.FAILED
        assert result.failure.kind == "EvaluationFailedError"
        assert result.failure.generation == 0
        assert not result.succeeded

    def test_strategy_error_fails_job_with_cause(self):
        descriptor = make_descriptor(population_size=6, max_generations=10)
        optimizer = create_optimizer("de")
        controller = GenerationController(descriptor, config=FAST_CONFIG, optimizer=optimizer)

        def corrupt(snapshot):
            if snapshot.generation == 2:
                optimizer.hyperparameters["CR"] = 5.0

        controller.progress_callback = corrupt
        result = controller.run()
        assert result.state is RunState.FAILED
        assert result.failure.kind == "InvalidHyperparameterError"
        assert result.failure.generation == 2
        assert result.generations == 3
        assert result.final_population.is_fully_evaluated

    def test_cancel_stops_after_evaluated_generation(self):
        descriptor = make_descriptor(population_size=12, max_generations=1000)
        controller = GenerationController(descriptor, config=FAST_CONFIG)

        def cancel_at_three(snapshot):
            if snapshot.generation == 3:
                controller.cancel()

        controller.progress_callback = cancel_at_three
        result = controller.run()
        assert result.state is RunState.CANCELLED
        assert result.generations == 4
        assert len(result.final_population) == 12
        assert result.final_population.is_fully_evaluated

    def test_cancel_before_start_still_evaluates_first_generation(self):
        controller = GenerationController(make_descriptor(population_size=5), config=FAST_CONFIG)
        controller.cancel()
        result = controller.run()
        assert result.state is RunState.CANCELLED
        assert result.generations == 1
        assert result.final_population.is_fully_evaluated

    def test_progress_interval(self):
        config = EngineConfig(progress_interval=3, retry_backoff_seconds=0)
        snapshots = []
        controller = GenerationController(
            make_descriptor(max_generations=10), config=config, progress_callback=snapshots.append,
        )
        controller.run()
        assert [s.generation for s in snapshots[:-1]] == [0, 3, 6, 9]
        assert snapshots[-1].is_terminal

    def test_generated_seed_is_recorded(self):
        result = run_job(make_descriptor(seed=None, max_generations=3), FAST_CONFIG)
        assert result.seed is not None
        replay = run_job(make_descriptor(seed=result.seed, max_generations=3), FAST_CONFIG)
        assert replay.history == result.history

    @given(previous=st.floats(allow_nan=False), current=st.floats(allow_nan=False))
    @settings(max_examples=100)
    def test_improvement_between_is_never_nan(self, previous, current):
        assert not math.isnan(improvement_between(previous, current))

    def test_improvement_from_sentinel(self):
        assert improvement_between(math.inf, 3.0) == math.inf
        assert improvement_between(math.inf, math.inf) == 0.0
        assert improvement_between(5.0, 3.0) == 2.0


class TestProgressFeed:

    def test_subscriber_starts_at_latest_snapshot(self):
        feed = ProgressFeed()
        controller = GenerationController(make_descriptor(max_generations=4), config=FAST_CONFIG)
        controller.progress_callback = feed.publish
        controller.run()
        feed.close()
        snapshots = list(feed.subscribe())
        assert len(snapshots) == 1
        assert snapshots[0].is_terminal

    def test_subscription_is_single_pass(self):
        feed = ProgressFeed()
        feed.close()
        iterator = feed.subscribe()
        assert list(iterator) == []
        assert list(iterator) == []

    def test_timeout_ends_subscription(self):
        feed = ProgressFeed()
        assert list(feed.subscribe(timeout=0.01)) == []

    def test_publish_after_close_rejected(self):
        feed = ProgressFeed()
        feed.close()
        with pytest.raises(RuntimeError):
            feed.publish(None)

    @staticmethod
    def _snapshot(generation, state=RunState.RUNNING):
        return ProgressSnapshot(
            job_id="job", state=state, generation=generation,
            best_fitness=1.0, mean_fitness=1.0, evaluations=generation,
        )

    def test_buffer_keeps_only_recent_snapshots(self):
        feed = ProgressFeed(capacity=3)
        for generation in range(10):
            feed.publish(self._snapshot(generation))
        assert len(feed) == 3
        assert feed.published == 10
        feed.close()
        assert [s.generation for s in feed.subscribe()] == [9]

    def test_lagging_subscriber_skips_dropped_snapshots(self):
        feed = ProgressFeed(capacity=3)
        feed.publish(self._snapshot(0))
        iterator = feed.subscribe()
        assert next(iterator).generation == 0
        for generation in range(1, 10):
            feed.publish(self._snapshot(generation))
        feed.publish(self._snapshot(10, state=RunState.CONVERGED))
        feed.close()
        assert [s.generation for s in iterator] == [8, 9, 10]

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            ProgressFeed(capacity=0)


class TestJobScheduler:

    def test_submit_and_wait(self):
        with JobScheduler(FAST_CONFIG) as scheduler:
            handle = scheduler.submit_job(make_descriptor(max_generations=10))
            result = scheduler.wait(handle, timeout=30)
            assert result.state is RunState.MAX_GENERATIONS_REACHED
            assert scheduler.get_result(handle) is result
            status = scheduler.get_status(handle)
            assert status.state is RunState.MAX_GENERATIONS_REACHED
            assert status.best_fitness == result.best_fitness

    def test_invalid_descriptor_creates_no_job(self):
        with JobScheduler(FAST_CONFIG) as scheduler:
            with pytest.raises(InvalidDescriptorError):
                scheduler.submit_job(make_descriptor(algorithm="pso", population_size=1))
            assert scheduler.list_jobs() == []

    def test_unknown_handle(self):
        with JobScheduler(FAST_CONFIG) as scheduler:
            with pytest.raises(JobNotFoundError):
                scheduler.get_status(JobHandle("missing"))
            with pytest.raises(JobNotFoundError):
                scheduler.cancel("missing")

    def test_subscription_ends_with_terminal_snapshot(self):
        with JobScheduler(FAST_CONFIG) as scheduler:
            handle = scheduler.submit_job(make_descriptor(max_generations=20))
            snapshots = list(scheduler.subscribe_progress(handle, timeout=30))
            assert snapshots
            assert snapshots[-1].is_terminal
            assert sum(1 for s in snapshots if s.is_terminal) == 1
            generations = [s.generation for s in snapshots]
            assert generations == sorted(generations)
            # the result is visible once the terminal snapshot is out
            assert scheduler.get_result(handle) is not None

    def test_cancel_running_job(self):
        slow = SlowSphere(Bounds.uniform(-5, 5, 2))
        descriptor = make_descriptor(objective=slow, population_size=10, max_generations=100_000)
        with JobScheduler(FAST_CONFIG) as scheduler:
            handle = scheduler.submit_job(descriptor)
            for snapshot in scheduler.subscribe_progress(handle, timeout=30):
                if snapshot.generation >= 2:
                    assert scheduler.cancel(handle)
                    break
            result = scheduler.wait(handle, timeout=30)
            assert result.state is RunState.CANCELLED
            assert len(result.final_population) == 10
            assert result.final_population.is_fully_evaluated
            assert not scheduler.cancel(handle)

    def test_concurrent_jobs_are_independent(self):
        with JobScheduler(EngineConfig(max_concurrent_jobs=4, retry_backoff_seconds=0)) as scheduler:
            handles = [
                scheduler.submit_job(make_descriptor(algorithm=kind, population_size=8, max_generations=10))
                for kind in ("de", "pso", "gwo", "woa")
            ]
            results = [scheduler.wait(h, timeout=60) for h in handles]
        solo = [
            run_job(make_descriptor(algorithm=kind, population_size=8, max_generations=10), FAST_CONFIG)
            for kind in ("de", "pso", "gwo", "woa")
        ]
        for concurrent, alone in zip(results, solo):
            assert concurrent.history == alone.history

    def test_agent_profile_updated_at_terminal(self):
        store = InMemoryProfileStore()
        events = []
        with JobScheduler(FAST_CONFIG, profile_store=store, on_level_up=events.append) as scheduler:
            handle = scheduler.submit_job(make_descriptor(agent_id="agent-7", max_generations=15))
            result = scheduler.wait(handle, timeout=30)

        profile = store.load("agent-7")
        assert profile is not None
        assert profile.jobs_completed == 1
        assert profile.outcomes[0].job_id == result.job_id
        assert profile.experience > 0
        assert profile.algorithm_experience["de"] == profile.experience
        assert list(profile.level_ups) == events

    def test_profile_store_errors_do_not_fail_job(self):
        class BrokenStore:
            def load(self, agent_id):
                raise ConnectionError("store offline")

            def save(self, profile):
                raise AssertionError("not reached")

        with JobScheduler(FAST_CONFIG, profile_store=BrokenStore()) as scheduler:
            handle = scheduler.submit_job(make_descriptor(agent_id="agent-1", max_generations=5))
            result = scheduler.wait(handle, timeout=30)
        assert result.state is RunState.MAX_GENERATIONS_REACHED

    def test_cancelled_job_earns_no_experience(self):
        store = InMemoryProfileStore({"a": AgentProfile(agent_id="a", experience=50.0)})
        policy = ProgressionPolicy()
        slow = SlowSphere(Bounds.uniform(-5, 5, 2))
        with JobScheduler(FAST_CONFIG, profile_store=store, progression=policy) as scheduler:
            handle = scheduler.submit_job(
                make_descriptor(objective=slow, agent_id="a", population_size=6, max_generations=100_000)
            )
            scheduler.cancel(handle)
            result = scheduler.wait(handle, timeout=30)
        assert result.state is RunState.CANCELLED
        profile = store.load("a")
        assert profile.experience == 50.0
        assert profile.outcomes[-1].experience == 0.0

    def test_submit_after_shutdown(self):
        scheduler = JobScheduler(FAST_CONFIG)
        scheduler.shutdown()
        with pytest.raises(RuntimeError):
            scheduler.submit_job(make_descriptor())

    def test_list_jobs(self):
        with JobScheduler(FAST_CONFIG) as scheduler:
            first = scheduler.submit_job(make_descriptor(max_generations=3))
            second = scheduler.submit_job(make_descriptor(max_generations=3, seed=1))
            scheduler.wait(first, timeout=30)
            scheduler.wait(second, timeout=30)
            ids = {status.job_id for status in scheduler.list_jobs()}
        assert ids == {first.job_id, second.job_id}

    def test_finished_jobs_beyond_retention_are_evicted(self):
        config = EngineConfig(max_concurrent_jobs=1, evaluation_workers=1, retry_backoff_seconds=0, max_retained_jobs=2)
        with JobScheduler(config) as scheduler:
            handles = []
            for seed in range(3):
                handle = scheduler.submit_job(make_descriptor(max_generations=3, seed=seed))
                scheduler.wait(handle, timeout=30)
                handles.append(handle)
            with pytest.raises(JobNotFoundError):
                scheduler.get_status(handles[0])
            assert {s.job_id for s in scheduler.list_jobs()} == {handles[1].job_id, handles[2].job_id}
            assert scheduler.get_result(handles[2]).final_population is not None

    def test_forget_only_finished_jobs(self):
        slow = SlowSphere(Bounds.uniform(-5, 5, 2))
        with JobScheduler(FAST_CONFIG) as scheduler:
            handle = scheduler.submit_job(make_descriptor(objective=slow, population_size=6, max_generations=100_000))
            assert scheduler.forget(handle) is False
            scheduler.cancel(handle)
            scheduler.wait(handle, timeout=30)
            assert scheduler.forget(handle) is True
            with pytest.raises(JobNotFoundError):
                scheduler.get_result(handle)
            assert scheduler.list_jobs() == []

    def test_error_outside_generation_loop_marks_job_failed(self, monkeypatch):
        def crash(self, publish_terminal=True):
            raise RuntimeError("controller crashed")

        monkeypatch.setattr(GenerationController, "run", crash)
        with JobScheduler(FAST_CONFIG) as scheduler:
            handle = scheduler.submit_job(make_descriptor(max_generations=3))
            with pytest.raises(RuntimeError, match="controller crashed"):
                scheduler.wait(handle, timeout=30)
            assert scheduler.get_status(handle).state is RunState.FAILED
            result = scheduler.get_result(handle)
            assert result.failure.kind == "RuntimeError"
            assert scheduler.cancel(handle) is False
            assert list(scheduler.subscribe_progress(handle, timeout=5)) == []

    def test_configured_log_level_is_applied(self):
        logger = logging.getLogger("swarm_engine")
        previous = logger.level
        try:
            JobScheduler(EngineConfig(log_level="DEBUG")).shutdown()
            assert logger.level == logging.DEBUG
            run_job(make_descriptor(max_generations=2), EngineConfig(log_level="WARNING", retry_backoff_seconds=0))
            assert logger.level == logging.WARNING
        finally:
            logger.setLevel(previous)
