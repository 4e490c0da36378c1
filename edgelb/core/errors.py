# -*- coding: utf-8 -*-
"""
错误分类模块
所有网关操作统一抛出 GatewayError，调用方按 kind 字段区分错误类型
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ErrorKind(str, Enum):
    """错误类型枚举"""

    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    PENDING = "pending"
    INVALID_SUBNET = "invalid_subnet"
    EXHAUSTED_RANGE = "exhausted_range"
    PRECONDITION_FAILED = "precondition_failed"
    CANCELLED = "cancelled"
    FATAL_CONFIG = "fatal_config"
    INVALID_ARGUMENT = "invalid_argument"
    BACKEND = "backend_error"


class ErrorDetails(BaseModel):
    """错误上下文"""

    gateway: Optional[str] = None
    resource_type: Optional[str] = None
    operation: Optional[str] = None
    resource_name: Optional[str] = None
    status_code: Optional[int] = None


class GatewayError(Exception):
    """网关操作错误，kind 标识错误类型，details 携带上下文"""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Optional[ErrorDetails] = None,
        **context,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or ErrorDetails(**context)

    @property
    def status_code(self) -> Optional[int]:
        return self.details.status_code

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"

    def __repr__(self) -> str:
        return f"GatewayError(kind={self.kind.value!r}, message={self.message!r})"
