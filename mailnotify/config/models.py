"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from mailnotify.domain.models import NotificationSpecification

IMPLICIT_TLS_PORT = 465


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


class SMTPSettings(BaseModel):
    """Mail relay connection, trust and retry settings."""

    host: str = Field(..., min_length=1, description="SMTP server hostname")
    port: int = Field(587, ge=1, le=65535, description="SMTP server port")
    use_tls: bool = Field(True, description="STARTTLS (or implicit TLS on port 465)")
    username: Optional[str] = Field(None, description="SMTP AUTH username")
    password: Optional[str] = Field(None, description="SMTP AUTH password")
    use_custom_server_certificate_validation: bool = Field(
        False,
        description="Validate the server chain against intermediates fetched from the secret store",
    )
    server_intermediate_certificate_secret_id: Optional[str] = Field(
        None, description="Secret holding the PEM bundle of intermediate certificates"
    )
    trust_roots_file: Optional[str] = Field(
        None, description="PEM file of trusted roots (system trust store when unset)"
    )
    max_retry_attempts: int = Field(3, ge=1, description="Total send attempts per message")
    retry_delay_ms: int = Field(1000, ge=0, description="Initial backoff delay in milliseconds")
    max_retry_delay_ms: Optional[int] = Field(
        None, ge=0, description="Upper bound on a single backoff delay (uncapped when unset)"
    )
    timeout_ms: int = Field(30000, ge=1, description="Connection and I/O timeout in milliseconds")

    @field_validator("host")
    @classmethod
    def strip_host(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("host cannot be empty or whitespace-only")
        return stripped

    @field_validator("server_intermediate_certificate_secret_id", "username", "password", "trust_roots_file")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @model_validator(mode="after")
    def validate_dependent_fields(self):
        """Check settings that only make sense together."""
        if (
            self.use_custom_server_certificate_validation
            and not self.server_intermediate_certificate_secret_id
        ):
            raise ValueError(
                "server_intermediate_certificate_secret_id is required when "
                "use_custom_server_certificate_validation is enabled"
            )

        if bool(self.username) != bool(self.password):
            raise ValueError("username and password must be set together for SMTP authentication")

        if self.max_retry_delay_ms is not None and self.max_retry_delay_ms < self.retry_delay_ms:
            raise ValueError("max_retry_delay_ms cannot be smaller than retry_delay_ms")

        return self

    @property
    def implicit_tls(self) -> bool:
        """Port 465 speaks TLS from the first byte."""
        return self.port == IMPLICIT_TLS_PORT

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000.0

    @property
    def max_retry_delay_seconds(self) -> Optional[float]:
        if self.max_retry_delay_ms is None:
            return None
        return self.max_retry_delay_ms / 1000.0

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


class SecretStoreConfig(BaseModel):
    """Where intermediate certificate bundles are fetched from."""

    region_name: Optional[str] = Field(None, description="AWS region for Secrets Manager")
    endpoint_url: Optional[str] = Field(None, description="Override endpoint (e.g. localstack)")


class TemplateConfig(BaseModel):
    """Template rendering options."""

    wrapper_template: Optional[str] = Field(
        None,
        description="Packaged layout template the rendered body is injected into (e.g. email_wrapper.html.j2)",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the notification service."""

    smtp: SMTPSettings = Field(..., description="Mail relay settings")
    secrets: SecretStoreConfig = Field(
        default_factory=SecretStoreConfig, description="Secret store settings"
    )
    templates: TemplateConfig = Field(
        default_factory=TemplateConfig, description="Template rendering options"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    specifications: List[NotificationSpecification] = Field(
        default_factory=list, description="Notification specifications served by the file resolver"
    )

    @model_validator(mode="after")
    def validate_unique_notification_types(self):
        seen = set()
        for spec in self.specifications:
            if spec.notification_type in seen:
                raise ValueError(
                    f"Duplicate specification for notification type '{spec.notification_type}'"
                )
            seen.add(spec.notification_type)
        return self

    def get_specification(self, notification_type: str) -> Optional[NotificationSpecification]:
        """Get a specification by notification type."""
        for spec in self.specifications:
            if spec.notification_type == notification_type:
                return spec
        return None
