"""
Swarm Engine

群體智慧優化引擎：族群式演算法、任務排程、代理人經驗與投資組合目標函數。
"""

# optimization 必須先於 agents 載入（scheduler 依賴 agents.progression）
from . import optimization
from . import agents
from . import portfolio
from .config import ConfigError, EngineConfig
from .logging_setup import configure_logging

__version__ = "0.1.0"

__all__ = [
    "optimization",
    "agents",
    "portfolio",
    "ConfigError",
    "EngineConfig",
    "configure_logging",
]
