"""structlog output for the harness.

swarmtir narrates a run as ``[TIR]`` progress lines at INFO: the root
workspace, each domain provisioned, the runtime pid, teardown. They go to
stderr because the spawned runtime inherits the test process's stderr, so
harness lines and runtime output interleave in the order they happened,
which is what makes a failed launch readable in pytest's captured output.

``log_json`` renders the same events as JSON lines for CI log collectors.
SQLAlchemy stays at WARNING; per-statement ledger chatter drowns the run.
"""

from __future__ import annotations

import logging
import sys

import structlog

# Logger name -> level applied on every configure_logging call.
QUIET_LOGGERS = {"sqlalchemy": logging.WARNING}

_PRE_CHAIN: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _renderer(log_json: bool) -> structlog.types.Processor:
    if log_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(
    *,
    verbose: bool = False,
    log_json: bool = False,
) -> None:
    """Route stdlib and structlog records through one stderr handler.

    Replaces the root handlers, so calling it again (one Runner per test)
    does not duplicate lines.

    Args:
        verbose: Also show DEBUG lines, e.g. every request id sent.
        log_json: Render JSON lines instead of the console format.
    """
    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_PRE_CHAIN,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_json),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.WARNING)

    logging.getLogger("swarmtir").setLevel(logging.DEBUG if verbose else logging.INFO)
    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
