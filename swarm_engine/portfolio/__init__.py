"""
投資組合目標函數 (Portfolio Objectives)
"""

from .objective import (
    PortfolioRebalanceObjective,
)

__all__ = [
    "PortfolioRebalanceObjective",
]
