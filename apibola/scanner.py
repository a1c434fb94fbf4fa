"""
Main Scanner Module

Orchestrates a run: loads the API description and rule database, generates
requests, replays them and classifies the responses.
"""

from typing import Optional

from . import openapi, rules
from .classifier import classify
from .config import ScanConfig
from .generator import Generator, SynthesisResult
from .openapi import SpecTree
from .reporter import Reporter, dump_request, print_debug
from .requester import Requester
from .rules import RuleStore


def prepare(api: SpecTree, store: RuleStore, config: ScanConfig) -> tuple[SpecTree, RuleStore]:
    """
    Apply load-stage adjustments before generation.

    Forces the target server, strips ignored methods and injects the bearer
    token as the ``Authorization`` identifier.
    """
    if config.target:
        api = api.with_target(config.target)
    if config.ignore_methods:
        api = api.without_methods(config.ignore_methods)
    if not config.no_auth and config.auth_token:
        store = store.with_identifier(config.auth_header, f"Bearer {config.auth_token}")
    return api, store


class Scanner:
    """
    Runs generation, replay and classification for one API.
    """

    def __init__(
        self,
        config: ScanConfig,
        api: SpecTree,
        store: RuleStore,
        reporter: Optional[Reporter] = None,
        rng=None,
    ):
        """
        Args:
            config: ScanConfig instance with run parameters
            api: API description, already adjusted by ``prepare``
            store: Rule database, already adjusted by ``prepare``
            reporter: Console/output formatter
            rng: Randomness provider passed to the generator
        """
        self.config = config
        self.api = api
        self.store = store
        self.reporter = reporter or Reporter()
        self.rng = rng
        self.requester: Optional[Requester] = None
        self.result: Optional[SynthesisResult] = None

    @classmethod
    def load(cls, config: ScanConfig, reporter: Optional[Reporter] = None) -> "Scanner":
        """Read the API and rule files named in ``config``."""
        api, store = prepare(openapi.load(config.api_file), rules.load(config.db_file), config)
        return cls(config, api, store, reporter=reporter)

    async def __aenter__(self):
        """Async context manager entry."""
        if not self.config.no_replay:
            self.requester = Requester(self.config)
            await self.requester.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.requester:
            await self.requester.__aexit__(exc_type, exc_val, exc_tb)

    def generate(self) -> SynthesisResult:
        """Build every satisfiable request."""
        self.result = Generator(self.api, self.store, self.config, self.rng).run()

        if self.config.verbose:
            self.reporter.print_coverage(len(self.result.requests), self.result.total, self.result.missed)
            for key, reason in self.result.failures.items():
                print_debug(f"{key}: {reason}")

        if self.config.print_requests:
            for request in self.result.requests:
                print_debug(dump_request(request) + "\n")

        return self.result

    async def replay(self, requests: list) -> list:
        """Replay requests against the target."""
        if not self.requester:
            self.requester = Requester(self.config)
            await self.requester.__aenter__()
        return await self.requester.replay_all(requests)

    def classify(self, pairs: list) -> tuple[list, list]:
        """Split replay results into suspicious and conformant."""
        suspicious, conformant = classify(pairs)

        if self.config.verbose:
            self.reporter.print_summary(suspicious, conformant)

        return suspicious, conformant

    async def run(self) -> str:
        """
        Generate, optionally replay and classify, and render the output.

        Returns:
            Output text in the configured format
        """
        result = self.generate()

        if self.config.no_replay:
            return self.reporter.format_requests(result.requests)

        pairs = await self.replay(result.requests)
        suspicious, conformant = self.classify(pairs)

        if self.config.output_format == "ado":
            return self.reporter.format_ado(result.requests, result.missed, suspicious, conformant)
        return self.reporter.format_results(result.requests, result.missed, suspicious, conformant)
