"""
代理人經驗系統 (Agent Progression)

將優化任務結果轉換為代理人經驗值與等級。
"""

from .progression import (
    DEFAULT_LEVEL_THRESHOLDS,
    LevelUpEvent,
    JobOutcome,
    AgentProfile,
    ProgressionPolicy,
    ProfileStore,
    InMemoryProfileStore,
    record_outcome,
)

__all__ = [
    "DEFAULT_LEVEL_THRESHOLDS",
    "LevelUpEvent",
    "JobOutcome",
    "AgentProfile",
    "ProgressionPolicy",
    "ProfileStore",
    "InMemoryProfileStore",
    "record_outcome",
]
