"""Command-line entry point for the mail notification service."""

import argparse
import json
import mimetypes
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv

from mailnotify.certificates import CertificateProvider, SecretsManagerStore
from mailnotify.config.environment import EnvironmentConfig
from mailnotify.config.exceptions import ConfigurationError
from mailnotify.config.loader import load_config
from mailnotify.config.models import AppConfig
from mailnotify.domain.models import Attachment
from mailnotify.logging import get_logger
from mailnotify.logging.config import configure_logging
from mailnotify.notifications.resolver import (
    InMemorySpecificationResolver,
    SpecificationResolver,
    load_specifications,
)
from mailnotify.notifications.service import NotificationService
from mailnotify.notifications.smtp_client import SMTPTransport
from mailnotify.notifications.templates import TemplateRenderer

logger = get_logger(__name__, component="cli")

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and settle the effective log level.

    Log level priority: CLI > environment > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level

    return app_config, env_config


def build_service(
    app_config: AppConfig,
    resolver: Optional[SpecificationResolver] = None,
    transport: Optional[SMTPTransport] = None,
) -> NotificationService:
    """Wire the notification service from configuration.

    Args:
        app_config: Validated application configuration
        resolver: Specification source (the config's specifications when None)
        transport: SMTP transport (built from ``app_config.smtp`` when None)
    """
    if transport is None:
        certificate_provider = None
        if app_config.smtp.use_custom_server_certificate_validation:
            secret_store = SecretsManagerStore(
                region_name=app_config.secrets.region_name,
                endpoint_url=app_config.secrets.endpoint_url,
            )
            certificate_provider = CertificateProvider(secret_store)
        transport = SMTPTransport(app_config.smtp, certificate_provider=certificate_provider)

    if resolver is None:
        resolver = InMemorySpecificationResolver(app_config.specifications)

    renderer = TemplateRenderer(wrapper_template=app_config.templates.wrapper_template)
    return NotificationService(resolver=resolver, transport=transport, template_renderer=renderer)


def load_data_file(path: Path) -> Dict[str, Any]:
    """Read the JSON object used as the template model.

    Raises:
        ConfigurationError: If the file is unreadable or not a JSON object
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read data file: {path}: {e}",
            suggestions=[f"Ensure {path} exists and is readable"],
        ) from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Data file {path} is not valid JSON: {e}",
            suggestions=["Check JSON syntax in the data file"],
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Data file {path} must contain a JSON object",
            suggestions=['Wrap template fields in an object, e.g. {"Content": "..."}'],
        )
    return data


def load_attachments(paths: Sequence[Path]) -> List[Attachment]:
    """Read attachment files, guessing MIME types from their names.

    Raises:
        ConfigurationError: If a file cannot be read
    """
    attachments = []
    for path in paths:
        try:
            content = path.read_bytes()
        except OSError as e:
            raise ConfigurationError(
                f"Failed to read attachment: {path}: {e}",
                suggestions=[f"Ensure {path} exists and is readable"],
            ) from e

        content_type, _ = mimetypes.guess_type(path.name)
        attachments.append(
            Attachment(
                filename=path.name,
                content=content,
                content_type=content_type or "application/octet-stream",
            )
        )
    return attachments


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailnotify",
        description="Mail Notify - templated email notifications over SMTP",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml, then config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    send_parser = subparsers.add_parser("send", help="Render and send one notification")
    send_parser.add_argument("notification_type", help="Notification type to send")
    send_parser.add_argument(
        "--data",
        type=Path,
        required=True,
        help="JSON file with the template model",
    )
    send_parser.add_argument(
        "--attach",
        type=Path,
        action="append",
        default=[],
        metavar="PATH",
        help="File to attach (repeatable)",
    )
    send_parser.add_argument(
        "--specifications",
        type=Path,
        default=None,
        help="YAML file of specifications (default: the config file's specifications)",
    )

    subparsers.add_parser("validate-config", help="Validate configuration and exit")

    return parser


def run_send(args: argparse.Namespace, app_config: AppConfig) -> int:
    resolver = None
    if args.specifications:
        resolver = InMemorySpecificationResolver(load_specifications(args.specifications))

    data = load_data_file(args.data)
    attachments = load_attachments(args.attach)
    service = build_service(app_config, resolver=resolver)

    cancel_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, cancelling send",
            extra={"event": "cli.signal_received", "signal": signum},
        )
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, signal_handler)
    try:
        result = service.deliver(
            args.notification_type,
            data,
            attachments=attachments,
            cancel_event=cancel_event,
        )
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if result.is_success():
        print(
            f"Sent {args.notification_type} to {result.recipient_count} recipient(s) "
            f"(attempts: {result.attempts})"
        )
        return EXIT_SUCCESS

    print(
        f"Notification {args.notification_type} not sent ({result.status})"
        + (f": {result.error}" if result.error else ""),
        file=sys.stderr,
    )
    return EXIT_FAILURE


def run_validate_config(app_config: AppConfig) -> int:
    smtp = app_config.smtp
    print("Configuration is valid")
    print(f"  SMTP relay: {smtp.host}:{smtp.port} (tls={'implicit' if smtp.implicit_tls else smtp.use_tls})")
    print(f"  Custom certificate validation: {smtp.use_custom_server_certificate_validation}")
    print(f"  Retry: {smtp.max_retry_attempts} attempt(s), initial delay {smtp.retry_delay_ms}ms")
    print(f"  Specifications: {len(app_config.specifications)}")
    return EXIT_SUCCESS


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for the mailnotify CLI.

    Returns:
        Exit code (0 success, 1 delivery failure, 2 configuration error).
    """
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)
        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "Mail Notify starting",
            extra={
                "event": "service.starting",
                "command": args.command,
                "log_level": env_config.log_level,
            },
        )

        if args.command == "validate-config":
            return run_validate_config(app_config)
        return run_send(args, app_config)

    except ConfigurationError as e:
        # Configuration errors are already formatted nicely
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return EXIT_FAILURE
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error",
            extra={
                "event": "service.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
