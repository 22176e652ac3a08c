"""
Shipping Gateway Exception Hierarchy

Every failure a caller sees from a shipping system or session is one of
these. Each carries a stable code, a severity and a details mapping that
shipping log records are written from.

Exception Hierarchy:
    ShippingGatewayError
    └── ShippingError
        ├── UnsupportedActionError
        ├── AddressValidationError
        └── ShippingConfigError
"""
from typing import Any, Dict, Optional


class ShippingGatewayError(Exception):
    """
    Root of the gateway's exceptions.

    Attributes:
        message: What went wrong, for humans
        code: Stable identifier callers can branch on
        details: Context (provider state, offending names, cause type)
        severity: P0 (config, nothing works) .. P3
    """

    default_code: str = "SHIPPING_GATEWAY_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code if code else self.default_code
        self.severity = severity if severity else self.default_severity
        self.details: Dict[str, Any] = dict(details) if details else {}

    def to_dict(self) -> Dict[str, Any]:
        """Flat form written into shipping log records."""
        data = {
            "error_type": type(self).__name__,
            "code": self.code,
            "severity": self.severity,
            "message": self.message,
            "details": self.details,
        }
        if self.__cause__ is not None:
            data["cause"] = repr(self.__cause__)
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code}: {self.message!r})"


# =============================================================================
# SHIPPING ERRORS
# =============================================================================

class ShippingError(ShippingGatewayError):
    """
    Uniform error raised by shipping systems.

    Whatever fails underneath a provider operation (HTTP, parsing,
    business rejection) reaches the caller as this type.
    """
    default_code = "SHIPPING_ERROR"
    default_severity = "P1"

    @classmethod
    def compose(cls, message: Optional[str], cause: BaseException) -> "ShippingError":
        """
        Wrap an arbitrary failure into a ShippingError.

        The cause type is recorded in details and the cause itself as __cause__.
        """
        error = cls(
            message or cause.__class__.__name__,
            details={"cause_type": cause.__class__.__name__},
        )
        error.__cause__ = cause
        return error


class UnsupportedActionError(ShippingError):
    """The shipping system does not support the requested operation."""
    default_code = "SHIPPING_UNSUPPORTED_ACTION"
    default_severity = "P2"

    def __init__(self, action: str, **kwargs):
        details = kwargs.pop("details", {})
        details["action"] = action
        self.action = action
        super().__init__(
            f"Shipping system does not support '{action}' action",
            details=details,
            **kwargs,
        )


class AddressValidationError(ShippingError):
    """Address was rejected by the provider."""
    default_code = "SHIPPING_VALIDATION_FAILED"
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["detail"] = detail
        self.detail = detail
        super().__init__(message, details=details, **kwargs)


class ShippingConfigError(ShippingError):
    """Shipping system configuration could not be bound."""
    default_code = "SHIPPING_CONFIG_INVALID"
    default_severity = "P0"

