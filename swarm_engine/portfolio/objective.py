"""
投資組合再平衡目標函數 (Portfolio Rebalance Objective)

將候選向量解讀為未正規化的只做多權重，正規化後計算（最小化）：

    fitness = -μ·w + λ · wᵀΣw + c · ‖w - w₀‖₁

其中 μ 為預期報酬、Σ 為共變異數矩陣、λ 為風險趨避係數、
c 為交易成本率、w₀ 為目前持倉權重。
"""

from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd

from ..optimization.exceptions import DimensionMismatchError
from ..optimization.models import Bounds
from ..optimization.objective import ObjectiveFunction


class PortfolioRebalanceObjective(ObjectiveFunction):
    """投資組合再平衡目標函數

    Attributes:
        expected_returns: 預期報酬向量 μ
        covariance: 共變異數矩陣 Σ
        current_weights: 目前持倉權重 w₀
        risk_aversion: 風險趨避係數 λ
        transaction_cost: 交易成本率 c
        max_weight: 單一資產權重上限（搜尋空間邊界）
        asset_names: 資產名稱
    """

    def __init__(
        self,
        expected_returns: Sequence[float],
        covariance: Any,
        current_weights: Optional[Sequence[float]] = None,
        risk_aversion: float = 1.0,
        transaction_cost: float = 0.001,
        max_weight: float = 1.0,
        asset_names: Optional[Sequence[str]] = None,
    ):
        """初始化目標函數

        Args:
            expected_returns: 各資產預期報酬
            covariance: 共變異數矩陣（n × n）
            current_weights: 目前持倉權重，預設為全現金（全零）
            risk_aversion: 風險趨避係數，必須 >= 0
            transaction_cost: 交易成本率，必須 >= 0
            max_weight: 單一資產權重上限 (0, 1]
            asset_names: 資產名稱，預設為 asset_0 ...

        Raises:
            ValueError: 若參數無效
            DimensionMismatchError: 若各輸入維度不一致
        """
        mu = np.asarray(expected_returns, dtype=np.float64)
        sigma = np.asarray(covariance, dtype=np.float64)
        n = mu.size

        if n < 1:
            raise ValueError("At least one asset is required")
        if sigma.shape != (n, n):
            raise DimensionMismatchError(n, sigma.shape[0] if sigma.ndim else 0, "covariance")
        if risk_aversion < 0:
            raise ValueError(f"risk_aversion must be >= 0, got {risk_aversion}")
        if transaction_cost < 0:
            raise ValueError(f"transaction_cost must be >= 0, got {transaction_cost}")
        if not 0 < max_weight <= 1:
            raise ValueError(f"max_weight must be in (0, 1], got {max_weight}")

        w0 = np.zeros(n) if current_weights is None else np.asarray(current_weights, dtype=np.float64)
        if w0.size != n:
            raise DimensionMismatchError(n, w0.size, "current_weights")

        names = list(asset_names) if asset_names is not None else [f"asset_{i}" for i in range(n)]
        if len(names) != n:
            raise DimensionMismatchError(n, len(names), "asset_names")

        super().__init__(Bounds.uniform(0.0, max_weight, n), name="portfolio_rebalance")
        self.expected_returns = mu
        self.covariance = sigma
        self.current_weights = w0
        self.risk_aversion = risk_aversion
        self.transaction_cost = transaction_cost
        self.max_weight = max_weight
        self.asset_names = names

    @classmethod
    def from_returns(
        cls,
        returns: pd.DataFrame,
        periods_per_year: int = 252,
        current_weights: Optional[pd.Series] = None,
        **kwargs: Any,
    ) -> "PortfolioRebalanceObjective":
        """由報酬率資料估計 μ 與 Σ

        Args:
            returns: 每期報酬率，欄位為資產名稱
            periods_per_year: 年化期數
            current_weights: 以資產名稱為索引的目前權重，缺少的資產視為 0
            **kwargs: 其餘建構參數

        Returns:
            目標函數實例
        """
        clean = returns.dropna(how="all")
        if clean.empty:
            raise ValueError("Returns data is empty")

        mu = clean.mean() * periods_per_year
        sigma = clean.cov() * periods_per_year

        weights = None
        if current_weights is not None:
            weights = current_weights.reindex(clean.columns).fillna(0.0).to_numpy()

        return cls(
            expected_returns=mu.to_numpy(),
            covariance=sigma.to_numpy(),
            current_weights=weights,
            asset_names=[str(c) for c in clean.columns],
            **kwargs,
        )

    @staticmethod
    def normalize(candidate: np.ndarray) -> np.ndarray:
        """將候選向量轉為總和為 1 的只做多權重，全零時均分"""
        weights = np.clip(np.asarray(candidate, dtype=np.float64), 0.0, None)
        total = weights.sum()
        if total <= 0:
            return np.full(weights.size, 1.0 / weights.size)
        return weights / total

    def evaluate(self, candidate: np.ndarray) -> float:
        w = self.normalize(candidate)
        expected = float(self.expected_returns @ w)
        risk = float(w @ self.covariance @ w)
        turnover = float(np.abs(w - self.current_weights).sum())
        return -expected + self.risk_aversion * risk + self.transaction_cost * turnover

    def weights_from(self, candidate: np.ndarray) -> pd.Series:
        """候選向量對應的目標權重"""
        return pd.Series(self.normalize(candidate), index=self.asset_names, name="weight")

    def rebalance_trades(self, candidate: np.ndarray) -> pd.Series:
        """目標權重與目前權重的差額（正為買進、負為賣出）

        目前權重總和為 1 時差額總和為 0。
        """
        target = self.normalize(candidate)
        return pd.Series(target - self.current_weights, index=self.asset_names, name="trade")

    def describe(self, candidate: np.ndarray) -> Dict[str, float]:
        """拆解目標函數各項"""
        w = self.normalize(candidate)
        return {
            "expected_return": float(self.expected_returns @ w),
            "risk": float(w @ self.covariance @ w),
            "turnover": float(np.abs(w - self.current_weights).sum()),
            "fitness": self.evaluate(candidate),
        }
