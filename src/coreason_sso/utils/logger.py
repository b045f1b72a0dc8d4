# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sso

import logging
import os
import sys
from typing import Any

from loguru import logger
from opentelemetry import trace

__all__ = ["logger", "configure_logging"]

# Human-readable format for the console sink
_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """
    Redirects standard logging messages to Loguru.
    Web servers and HTTP libraries log through the standard library; this keeps one sink.
    """

    def emit(self, record: logging.LogRecord) -> None:
        # Map the stdlib level name onto a Loguru level, or keep the number
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk past the logging module so the record points at the real caller
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename in (logging.__file__, __file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def trace_id_injector(record: dict[str, Any]) -> None:
    """
    Loguru patcher adding the active OpenTelemetry trace and span ids to ``extra``.
    """
    ctx = trace.get_current_span().get_span_context()
    # Only a valid span context carries ids worth logging
    if ctx.is_valid:
        # Stored in 'extra' so the JSON sink serializes them with every record
        record["extra"]["trace_id"] = format(ctx.trace_id, "032x")
        record["extra"]["span_id"] = format(ctx.span_id, "016x")
        # Same value under the name log search tools correlate on
        record["extra"]["correlation_id"] = format(ctx.trace_id, "032x")


def configure_logging() -> None:
    """
    Configures the logger from COREASON_SSO_LOG_LEVEL and COREASON_SSO_LOG_JSON.
    Call again to reload after the environment changes.
    """
    log_level = os.getenv("COREASON_SSO_LOG_LEVEL", "INFO").upper()
    log_json = os.getenv("COREASON_SSO_LOG_JSON", "false").lower() == "true"

    # Unknown level names fall back to INFO
    try:
        logger.level(log_level)
    except ValueError:
        log_level = "INFO"

    # Drop every handler, the default one included, and install the trace patcher
    logger.configure(handlers=[], patcher=trace_id_injector)

    if log_json:
        # Structured records on stdout for log collectors
        logger.add(sys.stdout, level=log_level, serialize=True)
    else:
        # Text on stderr. Trace ids stay in 'extra' and only show up in JSON output.
        logger.add(sys.stderr, level=log_level, format=_TEXT_FORMAT)

    # Route the standard library through Loguru; force replaces any earlier basicConfig
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Keep the root logger at the same level so debug records are dropped early
    numeric_level = logging.getLevelName(log_level)
    logging.getLogger().setLevel(numeric_level if isinstance(numeric_level, int) else logging.INFO)


# Initialize on import
configure_logging()
