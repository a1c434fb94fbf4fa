"""
Configuration management for APIBola.
"""

from dataclasses import dataclass, field, fields
from typing import Optional
import json

from .errors import ConfigurationError


@dataclass
class ScanConfig:
    """Configuration for a generation/replay session."""

    # Inputs
    api_file: str = ""
    db_file: str = ""

    # Identity
    auth_token: Optional[str] = None
    no_auth: bool = False
    auth_header: str = "Authorization"

    # Load-stage adjustments
    target: Optional[str] = None
    ignore_methods: list = field(default_factory=list)

    # Generation settings
    strict: bool = False
    all_bodies: bool = False
    proto: str = "https"  # Used when a server URL carries no scheme

    # Replay settings
    no_replay: bool = False
    timeout: int = 30
    delay: float = 0.0  # Delay between requests in seconds
    max_retries: int = 3
    verify_ssl: bool = True
    proxy: Optional[str] = None
    threads: int = 5

    # Output settings
    output_file: Optional[str] = None
    output_format: str = "json"  # json, ado
    verbose: bool = False
    print_requests: bool = False

    # Service mode
    listen: Optional[str] = None
    cert: Optional[str] = None
    key: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.ignore_methods, str):
            self.ignore_methods = split_methods(self.ignore_methods)

    @classmethod
    def from_file(cls, filepath: str) -> "ScanConfig":
        """Load configuration from a JSON file."""
        try:
            with open(filepath, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"invalid config file {filepath}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"config file {filepath} must hold a JSON object")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown config keys: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_options(cls, options: dict) -> "ScanConfig":
        """
        Build a configuration from a service-mode request body.

        Only the fields a remote caller may set are honored; everything
        else keeps its default.
        """
        return cls(
            auth_token=options.get("auth") or None,
            no_auth=bool(options.get("noauth", False)),
            target=options.get("target") or None,
            no_replay=bool(options.get("noreplay", False)),
            ignore_methods=options.get("ignoremethods") or [],
            output_format="ado" if options.get("ado") else "json",
        )

    def validate(self):
        """Check the mandatory option combinations for a CLI run."""
        if not self.auth_token and not self.no_auth:
            raise ConfigurationError("must supply an auth token or no-auth")
        if not self.api_file:
            raise ConfigurationError("must supply an API file")
        if not self.db_file:
            raise ConfigurationError("must supply a rule database")
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigurationError(f"unknown output format: {self.output_format}")

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {
            "api_file": self.api_file,
            "db_file": self.db_file,
            "auth_token": "***" if self.auth_token else None,
            "no_auth": self.no_auth,
            "target": self.target,
            "ignore_methods": self.ignore_methods,
            "strict": self.strict,
            "all_bodies": self.all_bodies,
            "no_replay": self.no_replay,
            "threads": self.threads,
            "output_format": self.output_format,
        }


def split_methods(value: str) -> list[str]:
    """Split a comma separated method list such as ``PUT,PATCH``."""
    return [m.strip() for m in value.split(",") if m.strip()]


OUTPUT_FORMATS = ["json", "ado"]

# Rule clause keywords
DISALLOW = "disallow"
PERMIT = "permit"
VALUES = "values"
PROPERTIES = "properties"
REGEX = "regex"
FUZZ = "fuzz"

# Context attributes a disallow/permit tuple may compare against
CONTEXT_ATTRIBUTES = ["title", "path"]

# OpenAPI operation keys, in the order they are emitted when unsorted
HTTP_METHODS = ["get", "put", "post", "delete", "options", "head", "patch", "trace"]

SCHEMA_REF_PREFIX = "#/components/schemas/"
JSON_CONTENT_TYPE = "application/json"

# Synthetic body value for date-time strings
PLACEHOLDER_DATE = "00-00-0000"
