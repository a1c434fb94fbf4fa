"""
Reporter Module

Handles formatting and output of generated requests and replay results.
"""

import json
import sys
from typing import TextIO

from .errors import EncodingError


class Reporter:
    """
    Formats and outputs generation and replay results.
    """

    # ANSI color codes
    COLORS = {
        "reset": "\033[0m",
        "bold": "\033[1m",
        "red": "\033[91m",
        "green": "\033[92m",
        "yellow": "\033[93m",
        "blue": "\033[94m",
        "magenta": "\033[95m",
        "cyan": "\033[96m",
    }

    def __init__(self, use_color: bool = True, output: TextIO = None):
        """
        Initialize reporter.

        Args:
            use_color: Whether to use ANSI colors in console output
            output: Stream for console output (defaults to stderr)
        """
        self.use_color = use_color
        self.output = output or sys.stderr

    def _color(self, text: str, color: str) -> str:
        """Apply color to text if colors are enabled."""
        if not self.use_color:
            return text
        return f"{self.COLORS.get(color, '')}{text}{self.COLORS['reset']}"

    def print_banner(self):
        """Print the tool banner."""
        banner = """
    _   ___ ___ ___  ___  _      _
   /_\\ | _ \\_ _| _ )/ _ \\| |    /_\\
  / _ \\|  _/| || _ \\ (_) | |__ / _ \\
 /_/ \\_\\_| |___|___/\\___/|____/_/ \\_\\

        BOLA Request Generator v1.0
"""
        print(self._color(banner, "cyan"), file=self.output)

    def print_config(self, config):
        """Print run configuration, skipping unset options."""
        for key, value in config.to_dict().items():
            if value is None or value is False or value == []:
                continue
            if isinstance(value, list):
                value = ", ".join(value)
            print(self._color("[*]", "blue") + f" {key}: {value}", file=self.output)

    def print_coverage(self, built: int, total: int, missed: dict):
        """Print how many operations produced a request."""
        percent = 100 * built / total if total else 0
        print(
            self._color("[*]", "blue") + f" Built {built}/{total} requests ({percent:.0f}%)",
            file=self.output
        )
        if missed:
            print(self._color("[!]", "yellow") + " Parameters missed:", file=self.output)
            for name, count in missed.items():
                print(f"    {name}: {count}", file=self.output)

    def print_summary(self, suspicious: list, conformant: list):
        """Print replay summary."""
        print(
            self._color("[+]", "green") + f" Conformant: {len(conformant)}",
            file=self.output
        )
        color = "red" if suspicious else "green"
        print(
            self._color("[!]" if suspicious else "[+]", color) + f" Suspicious: {len(suspicious)}",
            file=self.output
        )
        for pair in suspicious:
            print(
                f"    HTTP {pair.response.status_code} for {pair.request.method} {pair.request.path}",
                file=self.output
            )

    def format_requests(self, requests: list) -> str:
        """Format built requests as JSON (no-replay mode)."""
        return encode({"Requests": [dump_request(r) for r in requests]})

    def format_results(self, requests: list, missed: dict, suspicious: list, conformant: list) -> str:
        """Format classified replay results as JSON."""
        return encode({
            "Info": {
                "Server": requests[0].host if requests else "",
                "Missed": missed,
            },
            "Conformant": [_group(pair) for pair in conformant],
            "Suspicious": [_group(pair) for pair in suspicious],
        })

    def format_ado(self, requests: list, missed: dict, suspicious: list, conformant: list) -> str:
        """Format classified replay results as Azure DevOps logging commands."""
        lines = [
            "##[group]Miscellaneous Info",
            f"##[debug]Server we're targeting: `{requests[0].host if requests else ''}`",
            "##[debug]Parameters we missed:",
        ]
        for name, count in missed.items():
            lines.append(f"##[debug]`{name}` missed {count} times")
        lines += ["##[endgroup]", ""]

        if conformant:
            lines.append(f"##[group]Conformant (ok) Responses ({len(conformant)} requests total)")
            for pair in conformant:
                lines.append(
                    f"##[debug]Conformant Response code `HTTP {pair.response.status_code}` "
                    f"for path `HTTP {pair.request.method}` `{pair.request.path}`"
                )
                lines += _ado_body(pair.response.body)
            lines += ["##[endgroup]", ""]

        if suspicious:
            lines.append(
                f"##vso[task.logissue type=warning]Suspicious (bad) Responses ({len(suspicious)} requests total)"
            )
            for pair in suspicious:
                lines.append(
                    f"##vso[task.logissue type=warning]Suspicious Response code `HTTP {pair.response.status_code}` "
                    f"for path `HTTP {pair.request.method}` `{pair.request.path}`"
                )
                lines += _ado_body(pair.response.body)
            lines.append("")

        return "\n".join(lines) + "\n"

    def export(self, content: str, filepath: str):
        """Write rendered output to a file."""
        with open(filepath, "w") as f:
            f.write(content)
        print(self._color("[*]", "green") + f" Results saved to {filepath}", file=self.output)


def _group(pair) -> dict:
    return {
        "Method": pair.request.method,
        "HTTPCode": pair.response.status_code,
        "Path": pair.request.path,
        "Body": pair.response.body,
    }


def _ado_body(body: str) -> list[str]:
    if not body:
        return [""]
    return ["##[debug]Body received:", "", "```", body, "```", ""]


def encode(obj) -> str:
    """Serialize output as JSON."""
    try:
        return json.dumps(obj, indent=2) + "\n"
    except (TypeError, ValueError) as e:
        raise EncodingError(f"could not marshal results → {e}") from e


def dump_request(request) -> str:
    """Render a GeneratedRequest in HTTP/1.1 wire form."""
    url = request.full_url
    lines = [f"{request.method} {url.raw_path_qs} HTTP/1.1", f"Host: {request.host}"]
    for name, value in request.headers.items():
        lines.append(f"{name}: {value}")
    if request.body:
        lines.append(f"Content-Length: {len(request.body)}")
    return "\r\n".join(lines) + "\r\n\r\n" + request.body.decode("utf-8", errors="replace")


def print_error(message: str):
    """Print error message."""
    print(f"\033[91m[-]\033[0m {message}", file=sys.stderr)


def print_warning(message: str):
    """Print warning message."""
    print(f"\033[93m[!]\033[0m {message}", file=sys.stderr)


def print_info(message: str):
    """Print info message."""
    print(f"\033[94m[*]\033[0m {message}", file=sys.stderr)


def print_success(message: str):
    """Print success message."""
    print(f"\033[92m[+]\033[0m {message}", file=sys.stderr)


def print_debug(message: str):
    """Print a trace line."""
    print(f"\033[90m[.]\033[0m {message}", file=sys.stderr)
