"""Configuration loader for the mail notification service."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .models import AppConfig

DEFAULT_CONFIG_LOCATIONS = (
    Path("config.yaml"),
    Path("config") / "config.yaml",
)


def load_config(
    config_path: Optional[Path] = None,
    env_config: Optional[EnvironmentConfig] = None,
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load and validate configuration from a YAML file and the environment.

    Environment variables override the ``smtp`` section of the file, and
    ``AWS_REGION`` fills ``secrets.region_name`` when the file leaves it unset.

    Args:
        config_path: Optional path to configuration file (falls back to
            config.yaml, then config/config.yaml)
        env_config: Pre-loaded environment configuration (read from os.environ if None)

    Returns:
        Tuple of (AppConfig, EnvironmentConfig) with validated configuration

    Raises:
        ConfigurationError: If configuration is invalid or file not found
    """
    config_file = _find_config_file(config_path)
    config_dict = _read_yaml(config_file)

    if env_config is None:
        env_config = load_environment_config()

    merged = _apply_environment(config_dict, env_config)
    app_config = parse_app_config(merged)
    return app_config, env_config


def parse_app_config(config_dict: Dict[str, Any]) -> AppConfig:
    """Validate a raw configuration mapping.

    Raises:
        ConfigurationError: With one entry per pydantic validation error
    """
    # Sections left empty in YAML (only comments) load as None; treat them as absent
    config_dict = {key: value for key, value in config_dict.items() if value is not None}
    try:
        return AppConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigurationError(
            "Configuration validation failed",
            errors=_format_validation_errors(e),
            suggestions=[
                "Review config.example.yaml for correct format",
                "Check that smtp.host and every specification's subject, html_body and from_address are set",
                "Verify field types match the expected schema",
            ],
        ) from e


def validate_config_file(config_path: Path) -> List[str]:
    """
    Validate a configuration file without applying environment overrides.

    Args:
        config_path: Path to configuration file

    Returns:
        List of validation error messages (empty when the file is valid)
    """
    try:
        parse_app_config(_read_yaml(config_path))
    except ConfigurationError as e:
        return e.errors or [e.message]
    return []


def _read_yaml(config_file: Path) -> Dict[str, Any]:
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Configuration file not found: {config_file}",
            suggestions=[
                "Copy config.example.yaml to config.yaml",
                f"Ensure {config_file} exists and is readable",
            ],
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML configuration: {e}",
            suggestions=[
                "Check YAML syntax in your config file",
                "Ensure proper indentation (use spaces, not tabs)",
            ],
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file: {e}",
            suggestions=[f"Ensure {config_file} is readable", "Check file permissions"],
        ) from e

    if not config_dict:
        raise ConfigurationError(
            "Configuration file is empty",
            suggestions=["Copy config.example.yaml to config.yaml"],
        )

    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            "Configuration file must contain a mapping at the top level",
            suggestions=["Start the file with 'smtp:' and indent its settings"],
        )

    return config_dict


def _apply_environment(config_dict: Dict[str, Any], env_config: EnvironmentConfig) -> Dict[str, Any]:
    merged = dict(config_dict)

    smtp_section = merged.get("smtp") or {}
    if not isinstance(smtp_section, dict):
        raise ConfigurationError(
            "The 'smtp' section must be a mapping",
            suggestions=["Indent smtp settings under the 'smtp:' key"],
        )
    merged["smtp"] = {**smtp_section, **env_config.smtp_overrides}

    if env_config.aws_region:
        secrets_section = dict(merged.get("secrets") or {})
        secrets_section.setdefault("region_name", env_config.aws_region)
        merged["secrets"] = secrets_section

    return merged


def _format_validation_errors(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        field_path = " -> ".join(str(loc) for loc in item["loc"]) or "(root)"
        error_type = item["type"]

        if error_type == "missing":
            messages.append(f"Missing required field: {field_path}")
        elif error_type in ("string_type", "int_type", "bool_type", "list_type", "int_parsing", "bool_parsing"):
            expected = error_type.split("_")[0]
            messages.append(
                f"Invalid type for '{field_path}': expected {expected}, got {item.get('input')!r}"
            )
        else:
            messages.append(f"{field_path}: {item['msg']}")
    return messages


def _find_config_file(config_path: Optional[Path] = None) -> Path:
    """
    Find configuration file using fallback logic.

    Raises:
        ConfigurationError: If no config file is found
    """
    if config_path:
        if not config_path.exists():
            raise ConfigurationError(
                f"Specified configuration file not found: {config_path}",
                suggestions=[f"Ensure {config_path} exists", "Check the path and try again"],
            )
        return config_path

    for candidate in DEFAULT_CONFIG_LOCATIONS:
        if candidate.exists():
            return candidate

    raise ConfigurationError(
        "Configuration file not found",
        errors=[f"Tried: {candidate}" for candidate in DEFAULT_CONFIG_LOCATIONS],
        suggestions=[
            "Copy config.example.yaml to config.yaml",
            "Use --config flag to specify a custom location",
        ],
    )
