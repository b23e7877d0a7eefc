"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError。
与按消息文本判断不同，这里每个异常类在定义处就携带 ErrorKind
分类和 retryable 标记，重试策略与用户提示都只读取这两个字段。
"""

from enum import Enum


class ErrorKind(str, Enum):
    """错误分类标签，驱动重试策略与面向用户的提示文案。"""

    CONFIGURATION = "configuration"
    AUTH = "auth"
    BAD_REQUEST = "bad_request"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    API = "api"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    PARSE = "parse"


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "RATE_LIMIT"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、attempt 等）。
    """

    kind: ErrorKind = ErrorKind.API
    retryable: bool = False

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ConfigurationError(BusinessError):
    """配置缺失或非法（API Key、base URL、参数越界等），立即失败，不重试。"""

    kind = ErrorKind.CONFIGURATION


class ValidationError(ConfigurationError):
    """参数或输入数据校验失败。"""


class AuthError(BusinessError):
    """鉴权失败（HTTP 401/403）。"""

    kind = ErrorKind.AUTH


class BadRequestError(BusinessError):
    """请求格式错误（HTTP 400）。"""

    kind = ErrorKind.BAD_REQUEST


class RateLimitError(BusinessError):
    """Provider 限流错误（HTTP 429）。

    与普通瞬时错误一样走指数退避重试，没有读取 Retry-After。
    """

    kind = ErrorKind.RATE_LIMIT
    retryable = True


class ServerUnavailableError(BusinessError):
    """Provider 服务端错误（HTTP 5xx）。"""

    kind = ErrorKind.SERVER
    retryable = True


class ApiError(BusinessError):
    """其他非 2xx 响应。"""

    kind = ErrorKind.API
    retryable = True


class NetworkError(BusinessError):
    """网络层错误，例如 DNS 失败、连接被重置等。"""

    kind = ErrorKind.NETWORK
    retryable = True


class RequestTimeoutError(NetworkError):
    """请求超时（本地计时器触发或 httpx 超时）。"""

    kind = ErrorKind.TIMEOUT


class RequestCancelledError(BusinessError):
    """用户主动取消请求。"""

    kind = ErrorKind.CANCELLED


class ParseError(BusinessError):
    """流式事件帧解析失败，只在帧级别记录，不向上传播。"""

    kind = ErrorKind.PARSE
