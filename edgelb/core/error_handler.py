# -*- coding: utf-8 -*-
"""
统一错误处理模块
为负载均衡API提供一致的错误响应格式
"""

import logging
from typing import Optional

from fastapi import HTTPException
from pydantic import BaseModel

from edgelb.core.errors import ErrorDetails, ErrorKind, GatewayError

# 错误类型 -> HTTP状态码
STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.PENDING: 503,
    ErrorKind.INVALID_SUBNET: 400,
    ErrorKind.EXHAUSTED_RANGE: 409,
    ErrorKind.PRECONDITION_FAILED: 412,
    ErrorKind.CANCELLED: 408,
    ErrorKind.FATAL_CONFIG: 500,
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.BACKEND: 502,
}


class ErrorResponse(BaseModel):
    """统一错误响应模型"""

    code: int
    message: str
    error_type: ErrorKind
    details: ErrorDetails


class ResourceErrorHandler:
    """资源API错误处理器"""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def handle_gateway_exception(
        self,
        e: GatewayError,
        operation: Optional[str] = None,
        resource_name: Optional[str] = None,
    ) -> HTTPException:
        """将网关错误转换为HTTP异常"""
        details = e.details.model_copy(
            update={
                "operation": e.details.operation or operation,
                "resource_name": e.details.resource_name or resource_name,
            }
        )
        status_code = STATUS_CODES.get(e.kind, 500)

        log_prefix = f"[{details.resource_type or '负载均衡'}][{details.operation or '操作'}]"
        if status_code >= 500 and e.kind is not ErrorKind.PENDING:
            self.logger.error("%s%s", log_prefix, e)
        else:
            self.logger.warning("%s%s", log_prefix, e)

        error_response = ErrorResponse(
            code=status_code, message=e.message, error_type=e.kind, details=details
        )
        return HTTPException(
            status_code=status_code, detail=error_response.model_dump(mode="json")
        )

    def handle_validation_error(
        self,
        message: str,
        resource_type: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> HTTPException:
        """处理验证错误"""
        details = ErrorDetails(resource_type=resource_type, operation=operation)

        log_prefix = f"[{resource_type or '负载均衡'}][{operation or '操作'}]"
        self.logger.warning("%s验证错误: %s", log_prefix, message)

        error_response = ErrorResponse(
            code=400,
            message=message,
            error_type=ErrorKind.INVALID_ARGUMENT,
            details=details,
        )
        return HTTPException(
            status_code=400, detail=error_response.model_dump(mode="json")
        )


def create_error_handler(logger: logging.Logger) -> ResourceErrorHandler:
    """创建错误处理器实例"""
    return ResourceErrorHandler(logger)
