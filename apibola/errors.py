"""
Exception types raised by APIBola.

Resolution misses are not errors; they are reported through
``Resolution`` values and only become ``ResolutionError`` in strict mode.
"""


class ApiBolaError(Exception):
    """Base class for all fatal APIBola errors."""


class ConfigurationError(ApiBolaError, ValueError):
    """Malformed input: regex, response code, rule file, API document or options."""


class ResolutionError(ApiBolaError):
    """A required parameter could not be filled while running in strict mode."""

    def __init__(self, name: str, location: str):
        self.name = name
        self.location = location
        super().__init__(f"could not find {location} parameter → {name}")


class AssemblyError(ApiBolaError):
    """A request could not be constructed from its method and URL."""


class EncodingError(ApiBolaError):
    """Results could not be serialized for output."""
