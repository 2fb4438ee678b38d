"""网关错误类型。"""

from __future__ import annotations


class GatewayError(Exception):
    """网关错误基类，携带 HTTP 状态码和错误类型。"""

    status = 500
    error_type = "server_error"

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.message = message
        self.provider = provider


class AuthenticationError(GatewayError):
    """缺失或无法识别的凭证"""

    status = 401
    error_type = "authentication_error"


class RoutingError(GatewayError):
    """未知路径"""

    status = 404
    error_type = "not_found"


class BadRequestError(GatewayError):
    """请求体无法解析"""

    status = 400
    error_type = "invalid_request_error"


class VendorError(GatewayError):
    """渠道返回非 2xx 或响应格式异常"""

    def __init__(
        self, message: str, provider: str | None = None, detail: str | None = None
    ):
        super().__init__(message, provider)
        self.detail = detail


class TaskTimeoutError(VendorError):
    """轮询次数或资源池耗尽"""


class SecurityError(GatewayError):
    """图片地址未通过 SSRF 检查"""

    status = 400
    error_type = "security_error"
