"""
引擎配置 (Engine Configuration)

管理排程器與評估器的執行參數，支援字典、JSON 檔案與環境變數載入。
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union


class ConfigError(ValueError):
    """Raised when an engine configuration value is invalid."""


BOUNDARY_MODES = ("clip", "reflect")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class EngineConfig:
    """引擎配置

    Attributes:
        max_concurrent_jobs: 同時執行的任務數上限
        evaluation_workers: 單一任務內的並行評估數（1 表示依序評估）
        evaluation_retries: 單一候選解的重試次數
        retry_backoff_seconds: 第一次重試前的等待秒數
        retry_backoff_multiplier: 每次重試的等待倍數
        strict_evaluation: 重試用盡時是否讓任務失敗
        progress_interval: 每隔幾個世代發布進度快照
        progress_buffer_size: 每個任務進度序列保留的快照數上限
        max_retained_jobs: 排程器保留的已終止任務數上限，超過時移除最舊者
        default_boundary_handling: 任務未指定時的越界處理方式
        log_level: 日誌等級
    """
    max_concurrent_jobs: int = 4
    evaluation_workers: int = 4
    evaluation_retries: int = 2
    retry_backoff_seconds: float = 0.05
    retry_backoff_multiplier: float = 2.0
    strict_evaluation: bool = False
    progress_interval: int = 1
    progress_buffer_size: int = 64
    max_retained_jobs: int = 1000
    default_boundary_handling: str = "clip"
    log_level: str = "INFO"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """驗證配置

        Raises:
            ConfigError: 若任何數值無效
        """
        for name in (
            "max_concurrent_jobs",
            "evaluation_workers",
            "progress_interval",
            "progress_buffer_size",
            "max_retained_jobs",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be an integer >= 1, got {value!r}")

        if isinstance(self.evaluation_retries, bool) or not isinstance(self.evaluation_retries, int) \
                or self.evaluation_retries < 0:
            raise ConfigError(f"evaluation_retries must be an integer >= 0, got {self.evaluation_retries!r}")

        if not self.retry_backoff_seconds >= 0:
            raise ConfigError(f"retry_backoff_seconds must be >= 0, got {self.retry_backoff_seconds!r}")
        if not self.retry_backoff_multiplier >= 1:
            raise ConfigError(f"retry_backoff_multiplier must be >= 1, got {self.retry_backoff_multiplier!r}")

        if self.default_boundary_handling not in BOUNDARY_MODES:
            raise ConfigError(
                f"default_boundary_handling must be one of {BOUNDARY_MODES}, "
                f"got {self.default_boundary_handling!r}"
            )
        if str(self.log_level).upper() not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {LOG_LEVELS}, got {self.log_level!r}")
        self.log_level = str(self.log_level).upper()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EngineConfig":
        """從字典建立配置，未知鍵值視為錯誤"""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**dict(data))

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> "EngineConfig":
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid configuration JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError("Configuration JSON must be an object")
        return cls.from_dict(data)

    def to_json_file(self, path: Union[str, Path]) -> None:
        Path(path).write_text(self.to_json(), encoding="utf-8")

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "EngineConfig":
        """從 JSON 檔案載入配置

        Raises:
            ConfigError: 檔案不存在或內容無效
        """
        try:
            content = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read configuration file {path}: {e}") from e
        return cls.from_json(content)

    @classmethod
    def from_env(
        cls,
        prefix: str = "SWARM_ENGINE_",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "EngineConfig":
        """從環境變數載入配置

        例如 SWARM_ENGINE_MAX_CONCURRENT_JOBS=8。未設定的欄位使用預設值。

        Args:
            prefix: 環境變數前綴
            environ: 環境變數來源，預設為 os.environ

        Returns:
            配置物件
        """
        source = os.environ if environ is None else environ
        data: Dict[str, Any] = {}

        for f in fields(cls):
            raw = source.get(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            data[f.name] = _parse_value(f.name, raw, f.default)

        return cls(**data)


def _parse_value(name: str, raw: str, default: Any) -> Any:
    try:
        if isinstance(default, bool):
            lowered = raw.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError:
        raise ConfigError(f"Invalid value for {name}: {raw!r}") from None
    return raw.strip()
