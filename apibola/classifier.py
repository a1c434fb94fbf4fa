"""
Response classification.

Heuristic: a replayed request whose status code is one the API documents as
an expected response, while running under a possibly foreign identity, is
suspicious. Anything else is conformant.
"""

from dataclasses import dataclass

from .errors import ConfigurationError


@dataclass(frozen=True)
class ResultPair:
    """A generated request and the response replaying it produced."""
    request: object  # GeneratedRequest
    response: object  # Response


def expected_codes(operation) -> list[int]:
    """Declared response codes of an operation, as integers."""
    codes = []
    for code in operation.responses:
        try:
            codes.append(int(code))
        except ValueError as e:
            raise ConfigurationError(
                f"could not parse expected code {code!r} for "
                f"{operation.method.upper()} {operation.path}"
            ) from e
    return codes


def classify(pairs) -> tuple[list, list]:
    """
    Partition result pairs into suspicious and conformant.

    A pair is compared once per declared code, so an operation declaring
    several codes can place the same pair in both buckets.

    Args:
        pairs: Iterable of ResultPair

    Returns:
        (suspicious, conformant) lists of ResultPair

    Raises:
        ConfigurationError: a declared response code is not an integer
    """
    suspicious = []
    conformant = []

    for pair in pairs:
        for code in expected_codes(pair.request.operation):
            if code == pair.response.status_code:
                suspicious.append(pair)
            else:
                conformant.append(pair)

    return suspicious, conformant
