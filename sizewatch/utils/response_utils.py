"""SizeWatch - 统一响应工具.

提供统一的成功/错误响应结构,避免在路由层散落 JSON 拼装逻辑.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from flask import Response, jsonify
from werkzeug.exceptions import HTTPException

from sizewatch.constants import ErrorCategory, ErrorMessages, ErrorSeverity, HttpStatus
from sizewatch.errors import AppError, map_exception_to_status
from sizewatch.utils.structlog_config import get_system_logger
from sizewatch.utils.time_utils import time_utils

if TYPE_CHECKING:
    from collections.abc import Mapping

SUCCESS_MESSAGE = "操作成功"


def unified_success_response(
    data: object | None = None,
    message: object | None = None,
    *,
    status: int = HttpStatus.OK,
) -> tuple[dict[str, Any], int]:
    """生成统一的成功响应载荷.

    Args:
        data: 响应数据,可选.
        message: 成功消息,可选,默认为"操作成功".
        status: HTTP 状态码,默认为 200.

    Returns:
        (响应载荷字典, HTTP 状态码).

    """
    payload: dict[str, Any] = {
        "success": True,
        "error": False,
        "message": str(message) if message is not None else SUCCESS_MESSAGE,
        "timestamp": time_utils.now().isoformat(),
    }
    if data is not None:
        payload["data"] = data
    return payload, status


def _describe_error(error: Exception) -> tuple[str, str, ErrorCategory, ErrorSeverity]:
    if isinstance(error, AppError):
        return error.message_key, error.message, error.category, error.severity
    if isinstance(error, HTTPException):
        return "HTTP_ERROR", error.description or error.name, ErrorCategory.VALIDATION, ErrorSeverity.LOW
    return "INTERNAL_ERROR", ErrorMessages.INTERNAL_ERROR, ErrorCategory.SYSTEM, ErrorSeverity.HIGH


def unified_error_response(
    error: Exception,
    *,
    status_code: int | None = None,
    extra: Mapping[str, Any] | None = None,
) -> tuple[dict[str, Any], int]:
    """生成统一的错误响应载荷并记录日志.

    非 AppError/HTTPException 的异常只返回通用文案,不泄露内部细节.

    Args:
        error: 异常对象.
        status_code: HTTP 状态码,可选,默认根据异常类型自动映射.
        extra: 额外的错误信息,可选.

    Returns:
        (错误响应载荷字典, HTTP 状态码).

    """
    message_key, message, category, severity = _describe_error(error)
    final_status = status_code or map_exception_to_status(error, default=HttpStatus.INTERNAL_SERVER_ERROR)
    payload: dict[str, Any] = {
        "success": False,
        "error": True,
        "message_code": message_key,
        "message": message,
        "category": category.value,
        "severity": severity.value,
        "recoverable": severity in (ErrorSeverity.LOW, ErrorSeverity.MEDIUM),
        "timestamp": time_utils.now().isoformat(),
    }
    if extra:
        payload["extra"] = dict(extra)

    logger = get_system_logger()
    if final_status >= HttpStatus.INTERNAL_SERVER_ERROR:
        logger.error(
            "请求处理失败",
            module="http",
            error_type=type(error).__name__,
            error=str(error),
            status_code=final_status,
            exc_info=error,
        )
    else:
        logger.warning(
            "请求被拒绝",
            module="http",
            error_type=type(error).__name__,
            error=str(error),
            status_code=final_status,
        )
    return payload, final_status


def jsonify_unified_success(*args: Any, **kwargs: Any) -> tuple[Response, int]:
    """返回 Flask Response 对象的成功响应便捷函数."""
    payload, status = unified_success_response(*args, **kwargs)
    return jsonify(payload), status


def jsonify_unified_error(error: Exception, **kwargs: Any) -> tuple[Response, int]:
    """返回 Flask Response 对象的错误响应便捷函数."""
    payload, status = unified_error_response(error, **kwargs)
    return jsonify(payload), status
