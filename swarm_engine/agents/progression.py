"""
代理人經驗與等級 (Agent Progression)

將完成的優化任務轉換為代理人經驗值。record_outcome 為純函數：
輸入舊的代理人檔案與任務結果，輸出新的檔案，不修改輸入。

經驗值公式（可調整的策略，測試只檢查單調性）：
    xp = base × (1 + w_i · log1p(improvement)) × (1 + w_d · log1p(difficulty))

其中 improvement = 初始最佳 - 最終最佳（≥ 0），difficulty = 維度 × 種群大小。
取消與失敗的任務記錄為 0 經驗值。
"""

import logging
import math
import threading
from bisect import bisect_right
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from ..optimization.models import JobResult, RunState, primary_fitness

logger = logging.getLogger(__name__)


DEFAULT_LEVEL_THRESHOLDS: Tuple[float, ...] = (0, 100, 250, 500, 1000, 2000, 4000, 8000, 16000, 32000)


@dataclass(frozen=True)
class LevelUpEvent:
    """升級事件"""
    agent_id: str
    previous_level: int
    new_level: int
    experience: float
    job_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "previous_level": self.previous_level,
            "new_level": self.new_level,
            "experience": self.experience,
            "job_id": self.job_id,
        }


@dataclass(frozen=True)
class JobOutcome:
    """單一任務對代理人的貢獻紀錄

    Attributes:
        job_id: 任務 ID
        algorithm: 演算法類型值
        state: 終止狀態值
        improvement: 初始最佳到最終最佳的改善量
        difficulty: 維度 × 種群大小
        experience: 獲得的經驗值
    """
    job_id: str
    algorithm: str
    state: str
    improvement: float
    difficulty: int
    experience: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "algorithm": self.algorithm,
            "state": self.state,
            "improvement": self.improvement,
            "difficulty": self.difficulty,
            "experience": self.experience,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobOutcome":
        return cls(
            job_id=data["job_id"],
            algorithm=data["algorithm"],
            state=data["state"],
            improvement=float(data.get("improvement", 0.0)),
            difficulty=int(data.get("difficulty", 0)),
            experience=float(data.get("experience", 0.0)),
        )


@dataclass(frozen=True)
class AgentProfile:
    """代理人檔案

    Attributes:
        agent_id: 代理人 ID
        experience: 累計經驗值
        level: 目前等級（從 1 開始）
        outcomes: 任務紀錄
        algorithm_experience: 各演算法累計經驗值
        level_ups: 最近一次更新產生的升級事件
    """
    agent_id: str
    experience: float = 0.0
    level: int = 1
    outcomes: Tuple[JobOutcome, ...] = ()
    algorithm_experience: Mapping[str, float] = field(default_factory=dict)
    level_ups: Tuple[LevelUpEvent, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "outcomes", tuple(self.outcomes))
        object.__setattr__(self, "algorithm_experience", MappingProxyType(dict(self.algorithm_experience)))
        object.__setattr__(self, "level_ups", tuple(self.level_ups))

    @property
    def jobs_completed(self) -> int:
        return len(self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        """轉換為字典，供外部儲存"""
        return {
            "agent_id": self.agent_id,
            "experience": self.experience,
            "level": self.level,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "algorithm_experience": dict(self.algorithm_experience),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentProfile":
        return cls(
            agent_id=data["agent_id"],
            experience=float(data.get("experience", 0.0)),
            level=int(data.get("level", 1)),
            outcomes=tuple(JobOutcome.from_dict(o) for o in data.get("outcomes", [])),
            algorithm_experience=data.get("algorithm_experience", {}),
        )


class ProgressionPolicy:
    """經驗值與等級策略

    Attributes:
        base_experience: 每個成功任務的基礎經驗值
        improvement_weight: 改善量權重
        difficulty_weight: 難度權重
        level_thresholds: 各等級所需的累計經驗值（遞增）
        max_improvement: 改善量上限，避免初始值為無限大時經驗值發散
    """

    def __init__(
        self,
        base_experience: float = 10.0,
        improvement_weight: float = 1.0,
        difficulty_weight: float = 0.5,
        level_thresholds: Sequence[float] = DEFAULT_LEVEL_THRESHOLDS,
        max_improvement: float = 1e6,
    ):
        if base_experience < 0 or improvement_weight < 0 or difficulty_weight < 0:
            raise ValueError("Experience weights must be non-negative")
        thresholds = tuple(float(t) for t in level_thresholds)
        if not thresholds or thresholds[0] != 0:
            raise ValueError("Level thresholds must start at 0")
        if any(b <= a for a, b in zip(thresholds, thresholds[1:])):
            raise ValueError("Level thresholds must be strictly increasing")

        self.base_experience = base_experience
        self.improvement_weight = improvement_weight
        self.difficulty_weight = difficulty_weight
        self.level_thresholds = thresholds
        self.max_improvement = max_improvement

    def improvement(self, result: JobResult) -> float:
        """初始最佳到最終最佳的改善量（主要目標，≥ 0）"""
        if result.initial_best_fitness is None or result.best_fitness is None:
            return 0.0
        initial = primary_fitness(result.initial_best_fitness)
        final = primary_fitness(result.best_fitness)
        if math.isinf(final):
            return 0.0
        if math.isinf(initial):
            return self.max_improvement
        return min(max(0.0, initial - final), self.max_improvement)

    def experience_for(self, improvement: float, difficulty: int) -> float:
        """依改善量與難度計算經驗值，對兩者皆單調不減"""
        improvement = min(max(0.0, improvement), self.max_improvement)
        difficulty = max(0, difficulty)
        return (
            self.base_experience
            * (1.0 + self.improvement_weight * math.log1p(improvement))
            * (1.0 + self.difficulty_weight * math.log1p(difficulty))
        )

    def level_for(self, experience: float) -> int:
        """累計經驗值對應的等級（從 1 開始）"""
        return max(1, bisect_right(self.level_thresholds, experience))

    def record_outcome(self, profile: AgentProfile, result: JobResult) -> AgentProfile:
        """將任務結果計入代理人檔案

        Args:
            profile: 舊的代理人檔案
            result: 終止狀態的任務結果

        Returns:
            新的代理人檔案，level_ups 為本次跨越的所有等級

        Raises:
            ValueError: 若任務尚未終止
        """
        if not result.state.is_terminal:
            raise ValueError(f"Job {result.job_id} is not terminal: {result.state.value}")

        difficulty = result.dimension * result.population_size
        if result.state in (RunState.CANCELLED, RunState.FAILED):
            improvement = 0.0
            experience = 0.0
        else:
            improvement = self.improvement(result)
            experience = self.experience_for(improvement, difficulty)

        outcome = JobOutcome(
            job_id=result.job_id,
            algorithm=result.algorithm,
            state=result.state.value,
            improvement=improvement,
            difficulty=difficulty,
            experience=experience,
        )

        total = profile.experience + experience
        new_level = self.level_for(total)
        events: List[LevelUpEvent] = [
            LevelUpEvent(
                agent_id=profile.agent_id,
                previous_level=level - 1,
                new_level=level,
                experience=total,
                job_id=result.job_id,
            )
            for level in range(profile.level + 1, new_level + 1)
        ]

        per_algorithm = dict(profile.algorithm_experience)
        per_algorithm[result.algorithm] = per_algorithm.get(result.algorithm, 0.0) + experience

        for event in events:
            logger.info(f"Agent {profile.agent_id} reached level {event.new_level} ({total:.1f} xp)")

        return replace(
            profile,
            experience=total,
            level=max(profile.level, new_level),
            outcomes=profile.outcomes + (outcome,),
            algorithm_experience=per_algorithm,
            level_ups=tuple(events),
        )


class ProfileStore(Protocol):
    """代理人檔案儲存介面（由外部系統實作）"""

    def load(self, agent_id: str) -> Optional[AgentProfile]:
        ...

    def save(self, profile: AgentProfile) -> None:
        ...


class InMemoryProfileStore:
    """記憶體中的代理人檔案儲存"""

    def __init__(self, profiles: Optional[Mapping[str, AgentProfile]] = None):
        self._profiles: Dict[str, AgentProfile] = dict(profiles or {})
        self._lock = threading.Lock()

    def load(self, agent_id: str) -> Optional[AgentProfile]:
        with self._lock:
            return self._profiles.get(agent_id)

    def save(self, profile: AgentProfile) -> None:
        with self._lock:
            self._profiles[profile.agent_id] = profile

    def list_agents(self) -> List[str]:
        with self._lock:
            return sorted(self._profiles)


def record_outcome(
    profile: AgentProfile,
    result: JobResult,
    policy: Optional[ProgressionPolicy] = None,
) -> AgentProfile:
    """以預設策略將任務結果計入代理人檔案"""
    return (policy or ProgressionPolicy()).record_outcome(profile, result)
