"""
演算法註冊表 (Algorithm Registry)

將 AlgorithmKind 對應到策略類別，並在任務建立前同步驗證任務描述。
"""

from typing import Any, Dict, Mapping, Optional, Type, Union

from .ant_colony import AntColony
from .differential_evolution import DifferentialEvolution
from .exceptions import InvalidDescriptorError, InvalidHyperparameterError
from .genetic import GeneticAlgorithm
from .grey_wolf import GreyWolf
from .hybrid import HybridDEPSO
from .models import AlgorithmKind, Bounds, JobDescriptor, TerminationPolicy
from .objective import CallableObjective, ObjectiveFunction
from .particle_swarm import ParticleSwarm
from .strategy import Optimizer
from .whale import Whale


OPTIMIZERS: Dict[AlgorithmKind, Type[Optimizer]] = {
    AlgorithmKind.DE: DifferentialEvolution,
    AlgorithmKind.PSO: ParticleSwarm,
    AlgorithmKind.ACO: AntColony,
    AlgorithmKind.GA: GeneticAlgorithm,
    AlgorithmKind.GWO: GreyWolf,
    AlgorithmKind.WOA: Whale,
    AlgorithmKind.DEPSO: HybridDEPSO,
}


def create_optimizer(
    kind: Union[str, AlgorithmKind],
    hyperparameters: Optional[Mapping[str, Any]] = None,
) -> Optimizer:
    """建立策略實例

    Args:
        kind: 演算法類型或其字串值
        hyperparameters: 演算法專屬超參數

    Returns:
        新的策略實例（每個任務獨佔一個）

    Raises:
        InvalidDescriptorError: 若演算法類型未知
        InvalidHyperparameterError: 若超參數無效
    """
    return OPTIMIZERS[AlgorithmKind.parse(kind)](hyperparameters)


def minimum_population_size(kind: Union[str, AlgorithmKind]) -> int:
    return OPTIMIZERS[AlgorithmKind.parse(kind)].MIN_POPULATION_SIZE


def resolve_objective(objective: Any, bounds: Bounds) -> ObjectiveFunction:
    """將一般可呼叫物件包裝為目標函數"""
    if isinstance(objective, ObjectiveFunction):
        return objective
    if callable(objective):
        return CallableObjective(objective, bounds)
    raise InvalidDescriptorError(
        f"Objective must be an ObjectiveFunction or callable, got {type(objective).__name__}",
        field="objective",
    )


def validate_descriptor(descriptor: JobDescriptor) -> Optimizer:
    """驗證任務描述

    檢查項目：
    1. 邊界與終止條件
    2. 目標函數維度與邊界一致，且任務邊界不超出目標函數宣告的邊界
    3. 超參數範圍
    4. 演算法最低種群大小

    Args:
        descriptor: 任務描述

    Returns:
        通過驗證的策略實例

    Raises:
        InvalidDescriptorError: 若任何檢查失敗
    """
    if not isinstance(descriptor.bounds, Bounds):
        raise InvalidDescriptorError("bounds must be a Bounds instance", field="bounds")

    termination = descriptor.termination
    if not isinstance(termination, TerminationPolicy):
        raise InvalidDescriptorError("termination must be a TerminationPolicy", field="termination")
    termination.validate()

    objective = resolve_objective(descriptor.objective, descriptor.bounds)
    if objective.dimension != descriptor.dimension:
        raise InvalidDescriptorError(
            f"Objective dimension {objective.dimension} does not match bounds dimension {descriptor.dimension}",
            field="objective",
            suggestion="Build the objective with the same Bounds as the job",
        )
    if not descriptor.bounds.is_within(objective.bounds):
        raise InvalidDescriptorError(
            f"Job bounds {descriptor.bounds.to_pairs()} exceed the objective bounds {objective.bounds.to_pairs()}",
            field="bounds",
            suggestion="Use the objective's declared bounds or a sub-range of them",
        )

    try:
        optimizer = create_optimizer(descriptor.algorithm, descriptor.hyperparameters)
    except InvalidHyperparameterError as exc:
        raise InvalidDescriptorError(
            exc.message,
            field=f"hyperparameters.{exc.name}",
            suggestion=exc.suggestion,
        ) from exc

    optimizer.validate_population_size(descriptor.population_size)
    return optimizer
