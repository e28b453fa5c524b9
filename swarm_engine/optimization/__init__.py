"""
群體智慧優化引擎 (Swarm-Intelligence Optimization Engine)

以可抽換的族群式演算法（DE、PSO、ACO、GA、GWO、WOA、DEPSO）
在連續搜尋空間中最小化任意目標函數。
"""

from .models import (
    Fitness,
    WORST_FITNESS,
    AlgorithmKind,
    BoundaryHandling,
    RunState,
    Bounds,
    Candidate,
    Population,
    TerminationPolicy,
    JobDescriptor,
    JobFailure,
    JobState,
    JobResult,
    JobStatus,
    ProgressSnapshot,
    fitness_key,
    is_better,
    primary_fitness,
)

from .objective import (
    ObjectiveFunction,
    CallableObjective,
    sphere,
    rastrigin,
    rosenbrock,
    benchmark_objective,
)

from .population import (
    PopulationGenerator,
    PopulationEvaluator,
    initialize,
    evaluate,
    track_best,
    check_diversity,
    validate_population_bounds,
)

from .strategy import (
    Optimizer,
    StepContext,
)

from .differential_evolution import (
    DifferentialEvolution,
)

from .particle_swarm import (
    ParticleSwarm,
)

from .selection import (
    SelectionOperator,
)

from .crossover import (
    CrossoverOperator,
)

from .mutation import (
    MutationOperator,
)

from .genetic import (
    GeneticAlgorithm,
)

from .ant_colony import (
    PheromoneArchive,
    AntColony,
)

from .grey_wolf import (
    GreyWolf,
)

from .whale import (
    Whale,
)

from .hybrid import (
    HybridDEPSO,
)

from .registry import (
    OPTIMIZERS,
    create_optimizer,
    minimum_population_size,
    validate_descriptor,
)

from .generation import (
    GenerationController,
    run_job,
)

from .scheduler import (
    JobHandle,
    ProgressFeed,
    JobScheduler,
)

from .exceptions import (
    OptimizationError,
    InvalidDescriptorError,
    JobNotFoundError,
    InvalidHyperparameterError,
    DimensionMismatchError,
    EvaluationFailedError,
    is_integer_value,
    validate_range,
    validate_positive_int,
    validate_choice,
    validate_dimension,
)

__all__ = [
    # Models
    "Fitness",
    "WORST_FITNESS",
    "AlgorithmKind",
    "BoundaryHandling",
    "RunState",
    "Bounds",
    "Candidate",
    "Population",
    "TerminationPolicy",
    "JobDescriptor",
    "JobFailure",
    "JobState",
    "JobResult",
    "JobStatus",
    "ProgressSnapshot",
    "fitness_key",
    "is_better",
    "primary_fitness",
    # Objective
    "ObjectiveFunction",
    "CallableObjective",
    "sphere",
    "rastrigin",
    "rosenbrock",
    "benchmark_objective",
    # Population
    "PopulationGenerator",
    "PopulationEvaluator",
    "initialize",
    "evaluate",
    "track_best",
    "check_diversity",
    "validate_population_bounds",
    # Strategies
    "Optimizer",
    "StepContext",
    "DifferentialEvolution",
    "ParticleSwarm",
    "SelectionOperator",
    "CrossoverOperator",
    "MutationOperator",
    "GeneticAlgorithm",
    "PheromoneArchive",
    "AntColony",
    "GreyWolf",
    "Whale",
    "HybridDEPSO",
    # Registry
    "OPTIMIZERS",
    "create_optimizer",
    "minimum_population_size",
    "validate_descriptor",
    # Generation
    "GenerationController",
    "run_job",
    # Scheduler
    "JobHandle",
    "ProgressFeed",
    "JobScheduler",
    # Exceptions
    "OptimizationError",
    "InvalidDescriptorError",
    "JobNotFoundError",
    "InvalidHyperparameterError",
    "DimensionMismatchError",
    "EvaluationFailedError",
    "is_integer_value",
    "validate_range",
    "validate_positive_int",
    "validate_choice",
    "validate_dimension",
]
