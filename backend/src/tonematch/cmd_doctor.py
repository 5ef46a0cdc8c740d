"""
Doctor Command Module.

Health checks for configuration, database and model artifacts.
"""

from __future__ import annotations

import structlog
from rich.console import Console
from sqlalchemy.exc import SQLAlchemyError

from tonematch.common.exceptions import ConfigurationError
from tonematch.config.loader import ToneMatchConfig
from tonematch.store.sql import SqlCandidateStore
from tonematch.vector.tokenizer import BPETokenizer

logger = structlog.get_logger(__name__)


class ToneMatchDoctor:
    """Diagnoses whether a deployment can serve retrieval requests."""

    def __init__(self, config: ToneMatchConfig, console: Console | None = None):
        self.config = config
        self.console = console or Console()

    def check_config(self) -> bool:
        search = self.config.vector_search
        if self.config.semantic_model.dimension != search.semantic_dimension:
            logger.error("config_check_failed", reason="semantic dimension mismatch")
            return False
        if self.config.style_model.dimension != search.style_dimension:
            logger.error("config_check_failed", reason="style dimension mismatch")
            return False
        logger.info("config_check_passed", status="OK")
        return True

    def check_db(self) -> bool:
        url = self.config.database.url
        if not url:
            logger.error("db_check_failed", error="TONEMATCH_DB_URL is not set")
            return False
        try:
            SqlCandidateStore.from_url(url, self.config.database.pool_size).ping()
        except SQLAlchemyError as e:
            logger.error("db_check_failed", error=str(e))
            return False
        logger.info("db_check", status="OK", url="[MASKED]")
        return True

    def check_style_model(self) -> bool:
        cfg = self.config.style_model
        if not cfg.enabled:
            logger.info("style_model_check", status="DISABLED")
            return True
        if not cfg.onnx_path.exists():
            logger.error("style_model_check_failed", missing=str(cfg.onnx_path))
            return False
        try:
            tokenizer = BPETokenizer.from_files(cfg.vocab_path, cfg.merges_path)
        except ConfigurationError as e:
            logger.error("style_model_check_failed", error=e.message)
            return False
        logger.info("style_model_check", status="OK", vocab_size=tokenizer.vocab_size)
        return True

    def run_all(self) -> bool:
        self.console.print("Running ToneMatch Doctor...")
        checks = [
            ("Configuration", self.check_config),
            ("Database", self.check_db),
            ("Style model", self.check_style_model),
        ]

        all_passed = True
        for name, check in checks:
            if check():
                self.console.print(f"Checking {name}... [green]OK[/green]")
            else:
                self.console.print(f"Checking {name}... [red]FAILED[/red]")
                all_passed = False

        if all_passed:
            self.console.print("\nSystem is HEALTHY.")
        else:
            self.console.print("\nSystem has ISSUES.")
        return all_passed
