"""领域层业务异常基类

账本、订阅、提现等子领域的专用异常定义在各自的 service 模块中，
统一继承 BusinessException；core 层负责把业务码映射为 HTTP 状态码。
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类

    Args:
        code: 业务码（BusinessCode / PaymentCode）
        message: 面向调用方的英文描述
        error_type: 错误类型名，出现在响应的 error.type 中
        details: 结构化上下文（交易ID、引用等）
        field: 出错的请求字段
        message_key: 稳定的文案键，供客户端本地化
    """

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        super().__init__(self.message)

    def log_fields(self) -> Dict[str, Any]:
        """结构化日志字段"""
        fields: Dict[str, Any] = {"code": int(self.code), "error_type": self.error_type, "error": self.message}
        if self.field:
            fields["field"] = self.field
        if self.details:
            fields["details"] = self.details
        return fields


class DomainValidationException(BusinessException):
    """金额、币种、状态机等领域规则校验失败"""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        details: Optional[dict] = None,
        message_key: Optional[str] = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
        )


class EntityNotFoundException(BusinessException):
    def __init__(self, entity: str, identifier: str, *, code: int = BusinessCode.NOT_FOUND):
        super().__init__(
            code=code,
            message=f"{entity} not found: {identifier}",
            error_type=f"{entity}NotFound",
            details={"entity": entity, "id": identifier},
            message_key=f"{entity.lower()}.not_found",
        )
