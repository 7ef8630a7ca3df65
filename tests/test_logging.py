"""Test logging configuration."""

import logging
from pathlib import Path

import structlog
from structlog.testing import LogCapture

from cftunnel.common.logging import build_processors, get_logger, mask_secrets, setup_logging


class TestLogging:
    """Test logging functionality."""

    def setup_method(self) -> None:
        """Reset structlog and root handlers before each test."""
        structlog.reset_defaults()
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    def test_setup_logging_with_level(self) -> None:
        """Root logger follows the requested level."""
        setup_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_httpx_logger_quieted(self) -> None:
        """httpx request logs stay at WARNING even when we log INFO."""
        setup_logging(level="INFO")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_structured_fields_captured(self) -> None:
        """Key/value context reaches the processors."""
        setup_logging(json_format=True)
        logger = get_logger("test")

        cap = LogCapture()
        structlog.configure(processors=[cap])

        logger.info("Action applied", hostname="api.example.com", action="create_dns")

        assert len(cap.entries) == 1
        assert cap.entries[0]["event"] == "Action applied"
        assert cap.entries[0]["hostname"] == "api.example.com"

    def test_secrets_masked(self) -> None:
        """Values under secret-looking keys are masked before rendering."""
        cap = LogCapture()
        structlog.configure(processors=[mask_secrets, cap])
        logger = structlog.get_logger("test")

        logger.info("Credentials saved", api_token="supersecrettoken1234", path="/tmp/x")

        entry = cap.entries[0]
        assert entry["api_token"].endswith("1234")
        assert "supersecret" not in entry["api_token"]
        assert entry["path"] == "/tmp/x"

    def test_mask_secrets_nested(self) -> None:
        """Secrets inside bound dictionaries are masked as well."""
        cap = LogCapture()
        structlog.configure(processors=[mask_secrets, cap])

        structlog.get_logger("test").info(
            "Payload", body={"name": "home", "tunnel_secret": "c2VjcmV0c2VjcmV0"}
        )

        body = cap.entries[0]["body"]
        assert body["name"] == "home"
        assert body["tunnel_secret"] == "*" * 12 + "cmV0"

    def test_setup_logging_with_file(self, tmp_path: Path) -> None:
        """Log records are also written to the optional file."""
        log_file = tmp_path / "cftunnel.log"
        setup_logging(log_file=str(log_file))

        logging.getLogger("test_file").info("test message")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_file.exists()
        assert "test message" in log_file.read_text()

    def test_get_logger(self) -> None:
        """get_logger returns a bound structlog logger."""
        setup_logging()
        logger = get_logger("test_module")
        assert hasattr(logger, "info")
        assert hasattr(logger, "warning")

    def test_processor_chain(self) -> None:
        """Secrets are masked before the renderer, which comes last."""
        chain = build_processors(json_format=True)
        assert isinstance(chain[-1], structlog.processors.JSONRenderer)
        assert chain.index(mask_secrets) < len(chain) - 1
        assert isinstance(build_processors()[-1], structlog.dev.ConsoleRenderer)
