# -*- coding: utf-8 -*-
"""
日志配置模块
组件日志器均以 "edgelb." 为前缀，统一挂在根日志器 "edgelb" 下
"""

import logging
import re
import sys
from typing import Optional

# httpx 在 INFO 级别逐条记录请求，网关轮询时过于频繁
NOISY_LOGGERS = ("httpx", "httpcore")

_BEARER = re.compile(r"(Bearer\s+)[^\s'\"]+", re.IGNORECASE)


class RedactTokenFilter(logging.Filter):
    """隐藏日志中的Bearer令牌"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _BEARER.sub(r"\1***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logger(
    level: str = "INFO",
    name: Optional[str] = None,
    library_level: str = "WARNING",
) -> logging.Logger:
    """
    设置日志配置

    Args:
        level: edgelb 日志级别，可重复调用调整
        name: 日志器名称，默认 "edgelb"
        library_level: httpx 等第三方库的日志级别

    Returns:
        logging.Logger: 配置后的日志器
    """
    logger = logging.getLogger(name or "edgelb")
    log_level = getattr(logging, str(level).upper(), logging.INFO)
    logger.setLevel(log_level)

    for library in NOISY_LOGGERS:
        logging.getLogger(library).setLevel(
            getattr(logging, str(library_level).upper(), logging.WARNING)
        )

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(log_level)
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(RedactTokenFilter())
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(console_handler)

    return logger
