"""
Generator as a service.

Exposes ``POST /generator`` over HTTP(S) with aiohttp.web; the request body
names the rule database and API description and carries the run options.
"""

import asyncio
import json
import ssl
from typing import Optional

import aiohttp
from aiohttp import web

from . import openapi, rules
from .config import ScanConfig
from .errors import ApiBolaError, ConfigurationError
from .reporter import Reporter, dump_request, print_info
from .scanner import Scanner, prepare

SPLASH = """<meta charset="utf-8">

<html>
<h1>Generator API</h1>

<p>You probably want to <code>POST /generator</code>.</p>
</html>
"""

USAGE = """Usage via POST method:


__OPTIONS__


{
	"cfgpath":          string,            // URL for rule database file
	"cfg":              string,            // Literal rule database string
	"api":              string,            // URL for OpenAPI JSON specification file
	"auth":             string,            // Authorization: Bearer [thispart]
	"target":           string,            // Hostname to replay built requests to
	"noauth":           bool,              // Strip Authorization: and Cookie: headers
	"noreplay":         bool,              // Do not replay built requests
	"ignoremethods":    array of string,   // HTTP methods to ignore (PUT, PATCH, etc.)
	"ado":              bool               // Use ADO output format for warnings, errors, etc.
}

Required fields: (cfg xor cfgpath) and (auth xor noauth) and api


__EXAMPLES__


Minimum required fields:

{
	"cfgpath":"http://somewhere/path/to.cfg",
	"api":"http://somewhere/path/to/api.json",
	"auth":"eyzSomeKindOfOauthKeyForAuth"
}

Pass the literal rule database, change the target, don't use any auth:

{
	"cfg":"a=b\\nc=d",
	"api":"http://somewhere/path/to/api.json",
	"noauth": true,
	"target": "1.2.3.4"
}

Don't replay and ignore PUT and PATCH methods:

{
	"cfgpath":"http://somewhere/path/to.cfg",
	"api":"http://somewhere/path/to/api.json",
	"auth":"eyzSomeKindOfOauthKeyForAuth",
	"noreplay": true,
	"ignoremethods": ["PUT", "PATCH"]
}
"""


STRING_OPTIONS = ["cfgpath", "cfg", "api", "auth", "target"]
BOOL_OPTIONS = ["noauth", "noreplay", "ado"]


def check_options(options: dict) -> Optional[str]:
    """Return a message for the first option whose JSON type is wrong."""
    for name in STRING_OPTIONS:
        if options.get(name) is not None and not isinstance(options[name], str):
            return f"{name} must be a string"
    for name in BOOL_OPTIONS:
        if options.get(name) is not None and not isinstance(options[name], bool):
            return f"{name} must be a boolean"
    methods = options.get("ignoremethods") or []
    if not isinstance(methods, list) or not all(isinstance(m, str) for m in methods):
        return "ignoremethods must be an array of strings"
    return None


class FetchError(Exception):
    """A remote rule database or API document could not be retrieved."""


def _error(status: int, message: str, usage: bool = True) -> web.Response:
    text = f"Error: {message}\n\n"
    if usage:
        text += USAGE
    return web.Response(status=status, text=text)


async def fetch_text(session: aiohttp.ClientSession, url: str) -> str:
    """GET ``url`` and return its body, insisting on 200 OK."""
    try:
        async with session.get(url) as resp:
            body = await resp.text(errors="replace")
            if resp.status != 200:
                raise FetchError(f"request for {url} denied → {body}")
            return body
    except asyncio.TimeoutError as e:
        raise FetchError(f"request for {url} timed out") from e
    except aiohttp.ClientError as e:
        raise FetchError(f"request for {url} failed → {e}") from e


async def root_handler(request: web.Request) -> web.Response:
    return web.Response(text=SPLASH, content_type="text/html")


async def generator_handler(request: web.Request) -> web.Response:
    if request.method != "POST":
        return web.Response(status=405, text=USAGE)

    raw = await request.text()
    try:
        options = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError as e:
        return _error(400, str(e))
    if not isinstance(options, dict):
        return _error(400, "request body must be a JSON object")
    problem = check_options(options)
    if problem:
        return _error(400, problem)

    has_cfg = bool(options.get("cfg"))
    has_cfgpath = bool(options.get("cfgpath"))
    if (not has_cfg and not has_cfgpath) or not options.get("api") \
            or (not options.get("auth") and not options.get("noauth")):
        return _error(400, "all JSON fields are mandatory (cfg xor cfgpath)")
    if has_cfg and has_cfgpath:
        return _error(400, "provide cfg xor cfgpath")

    config = ScanConfig.from_options(options)

    async with aiohttp.ClientSession() as session:
        try:
            cfg_text = options["cfg"] if has_cfg else await fetch_text(session, options["cfgpath"])
        except FetchError as e:
            return _error(400, str(e))

        try:
            store = rules.loads(cfg_text)
        except ConfigurationError as e:
            return _error(400, f"rule database load failed → {e}")

        try:
            api_text = await fetch_text(session, options["api"])
        except FetchError as e:
            return _error(400, str(e))

    try:
        api = openapi.loads(api_text)
    except ConfigurationError as e:
        return _error(500, f"parsing OpenAPI specification failed → {e}", usage=False)

    api, store = prepare(api, store, config)
    reporter = Reporter(use_color=False)

    try:
        async with Scanner(config, api, store, reporter=reporter) as scanner:
            if config.no_replay:
                result = scanner.generate()
                payload = [
                    {"Requests": [dump_request(r) for r in result.requests]},
                    result.missed,
                    result.total,
                ]
                return web.json_response(payload)

            output = await scanner.run()
    except ApiBolaError as e:
        return _error(500, f"generation failed → {e}")

    if config.output_format == "ado":
        return web.Response(text=output, content_type="text/plain")
    return web.Response(text=output, content_type="application/json")


def create_app() -> web.Application:
    """Build the service application."""
    app = web.Application()
    app.router.add_get("/", root_handler)
    app.router.add_route("*", "/generator", generator_handler)
    return app


def parse_listen(listen: str) -> tuple[Optional[str], int]:
    """Split ``host:port`` or ``:port`` into its parts."""
    host, _, port = listen.rpartition(":")
    try:
        return host or None, int(port)
    except ValueError as e:
        raise ConfigurationError(f"invalid listen address {listen!r}") from e


def run_server(listen: str, cert: Optional[str] = None, key: Optional[str] = None):
    """Serve the generator over HTTP, or HTTPS when a certificate and key are given."""
    if (cert or key) and not (cert and key):
        raise ConfigurationError("if using TLS, both key and cert must be provided")

    host, port = parse_listen(listen)
    ssl_context = None
    scheme = "http"
    if cert and key:
        ssl_context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        ssl_context.load_cert_chain(cert, key)
        scheme = "https"

    print_info(f"Listening on {scheme}://{host or 'localhost'}:{port} …")
    web.run_app(create_app(), host=host, port=port, ssl_context=ssl_context, print=None)
