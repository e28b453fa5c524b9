"""Logging setup for the swarm_engine package."""

import logging
from typing import Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_HANDLER_NAME = "swarm_engine"


def configure_logging(level: Union[int, str] = "INFO") -> logging.Logger:
    """為 swarm_engine logger 安裝單一串流處理器

    重複呼叫只會更新等級，不會重複加入處理器。

    Args:
        level: 日誌等級名稱或數值

    Returns:
        swarm_engine 根 logger
    """
    logger = logging.getLogger("swarm_engine")
    if isinstance(level, str):
        level = level.upper()
    logger.setLevel(level)

    if not any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger
