"""Environment variable loading and validation.

Every SMTP setting can be supplied (or overridden) through the environment,
which is how credentials and per-deployment relay hosts are usually injected.
"""

import os
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import ConfigurationError

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

# env var -> (smtp settings field, kind, minimum for ints)
SMTP_ENV_VARS: Dict[str, Tuple[str, str, Optional[int]]] = {
    "SMTP_HOST": ("host", "str", None),
    "SMTP_PORT": ("port", "port", None),
    "SMTP_USE_TLS": ("use_tls", "bool", None),
    "SMTP_USER": ("username", "str", None),
    "SMTP_PASS": ("password", "str", None),
    "SMTP_USE_CUSTOM_SERVER_CERTIFICATE_VALIDATION": (
        "use_custom_server_certificate_validation", "bool", None,
    ),
    "SMTP_SERVER_INTERMEDIATE_CERTIFICATE_SECRET_ID": (
        "server_intermediate_certificate_secret_id", "str", None,
    ),
    "SMTP_TRUST_ROOTS_FILE": ("trust_roots_file", "str", None),
    "SMTP_MAX_RETRY_ATTEMPTS": ("max_retry_attempts", "int", 1),
    "SMTP_RETRY_DELAY_MILLISECONDS": ("retry_delay_ms", "int", 0),
    "SMTP_MAX_RETRY_DELAY_MILLISECONDS": ("max_retry_delay_ms", "int", 0),
    "SMTP_TIMEOUT_MILLISECONDS": ("timeout_ms", "int", 1),
}

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvironmentConfig:
    """Values read from the process environment."""

    def __init__(
        self,
        smtp_overrides: Optional[Dict[str, Any]] = None,
        log_level: Optional[str] = None,
        environment: Optional[str] = None,
        aws_region: Optional[str] = None,
    ):
        self.smtp_overrides = dict(smtp_overrides or {})
        self.log_level = log_level
        self.environment = environment or "local"
        self.aws_region = aws_region


def _parse_bool(name: str, raw: str, errors: list) -> Optional[bool]:
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    errors.append(f"Invalid {name}: '{raw}'. Must be one of: true, false, 1, 0, yes, no.")
    return None


def _parse_int(name: str, raw: str, minimum: Optional[int], errors: list) -> Optional[int]:
    try:
        value = int(raw.strip())
    except ValueError:
        errors.append(f"Invalid {name}: '{raw}'. Must be a valid integer.")
        return None
    if minimum is not None and value < minimum:
        errors.append(f"Invalid {name}: {value}. Must be at least {minimum}.")
        return None
    return value


def load_environment_config(environ: Optional[Mapping[str, str]] = None) -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Recognized SMTP variables (all optional; they override the config file):
    - SMTP_HOST, SMTP_PORT (1-65535), SMTP_USE_TLS
    - SMTP_USER / SMTP_PASS (must be set together)
    - SMTP_USE_CUSTOM_SERVER_CERTIFICATE_VALIDATION
    - SMTP_SERVER_INTERMEDIATE_CERTIFICATE_SECRET_ID
    - SMTP_TRUST_ROOTS_FILE
    - SMTP_MAX_RETRY_ATTEMPTS (>= 1)
    - SMTP_RETRY_DELAY_MILLISECONDS, SMTP_MAX_RETRY_DELAY_MILLISECONDS (>= 0)
    - SMTP_TIMEOUT_MILLISECONDS (>= 1)

    Other variables:
    - LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - ENVIRONMENT: Environment label for log records (default: local)
    - AWS_REGION: Region for the Secrets Manager client

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any variable is present but invalid
    """
    env = os.environ if environ is None else environ
    errors: list = []
    overrides: Dict[str, Any] = {}

    for var_name, (field, kind, minimum) in SMTP_ENV_VARS.items():
        raw = env.get(var_name)
        if raw is None or raw.strip() == "":
            continue

        if kind == "bool":
            value = _parse_bool(var_name, raw, errors)
        elif kind == "int":
            value = _parse_int(var_name, raw, minimum, errors)
        elif kind == "port":
            value = _parse_int(var_name, raw, None, errors)
            if value is not None and not 1 <= value <= 65535:
                errors.append(f"Invalid {var_name}: {value}. Must be between 1 and 65535.")
                value = None
        else:
            value = raw.strip()

        if value is not None:
            overrides[field] = value

    # Validate SMTP authentication consistency
    has_user = bool(env.get("SMTP_USER"))
    has_pass = bool(env.get("SMTP_PASS"))
    if has_user and not has_pass:
        errors.append("SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication.")
    elif has_pass and not has_user:
        errors.append("SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication.")

    log_level = env.get("LOG_LEVEL")
    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your relay settings",
                "Verify SMTP_PORT is a number between 1 and 65535",
                "Use true/false for boolean SMTP_* variables",
            ],
        )

    return EnvironmentConfig(
        smtp_overrides=overrides,
        log_level=log_level.upper() if log_level else None,
        environment=env.get("ENVIRONMENT"),
        aws_region=env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION"),
    )
