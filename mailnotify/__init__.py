"""Mail Notify: templated, multi-recipient email notifications over SMTP."""

__version__ = "0.1.0"
