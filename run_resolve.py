from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from components.orchestrator import BatchOrchestrator, RunState
from extensions.logging import LoggingExtension
from ytresolver.config import Config, load_config

EXIT_OK = 0
EXIT_INPUT_ERROR = 1
EXIT_PERSIST_ERROR = 2


# ----------------------------
# CLI parsing
# ----------------------------

def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Resolve a YouTube video ID for every song in a JSON catalog"
    )

    p.add_argument("--input", type=Path, default=None, help="Input songs JSON (default: $YTR_INPUT_FILE or songs.json)")
    p.add_argument("--output", type=Path, default=None, help="Output JSON (default: $YTR_OUTPUT_FILE or songs_with_ids.json)")
    p.add_argument("--max-retries", type=int, default=None, help="Attempts per song before marking it failed")
    p.add_argument("--delay-min-ms", type=int, default=None, help="Lower bound of the random pause after each attempt")
    p.add_argument("--delay-max-ms", type=int, default=None, help="Upper bound of the random pause after each attempt")
    p.add_argument("--timeout-ms", type=int, default=None, help="Navigation timeout per attempt")
    p.add_argument("--pages", type=int, default=None, help="Number of parallel resolver sessions")
    p.add_argument("--checkpoint-every", type=int, default=None, help="Write the .tmp checkpoint every N song indices")
    p.add_argument("--backend", choices=["browser", "static"], default=None, help="Resolver backend")
    p.add_argument("--proxy", type=str, default=None, help="Proxy server for the browser backend")
    p.add_argument("--headful", action="store_true", help="Show the browser window")
    p.add_argument("--resume", action="store_true", help="Continue from <output>.tmp if it exists")

    # Logging
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Console/file log level")
    p.add_argument("--log-file", type=Path, default=None, help="Log file path (default: logs/resolver.log)")
    return p.parse_args(argv)


def build_config(args: argparse.Namespace, base: Optional[Config] = None) -> Config:
    """Environment first, then explicit CLI flags win."""
    cfg = base or load_config()
    overrides = {
        "input_file": args.input,
        "output_file": args.output,
        "max_retries": args.max_retries,
        "request_delay_min_ms": args.delay_min_ms,
        "request_delay_max_ms": args.delay_max_ms,
        "timeout_ms": args.timeout_ms,
        "max_parallel_pages": args.pages,
        "checkpoint_every": args.checkpoint_every,
        "backend": args.backend,
        "proxy_server": args.proxy,
        "log_file": args.log_file,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if args.headful:
        overrides["headless"] = False
    cfg = dataclasses.replace(cfg, **overrides)

    if cfg.max_retries < 1:
        raise SystemExit("--max-retries must be >= 1")
    if cfg.max_parallel_pages < 1:
        raise SystemExit("--pages must be >= 1")
    if cfg.checkpoint_every < 1:
        raise SystemExit("--checkpoint-every must be >= 1")
    if cfg.request_delay_min_ms < 0 or cfg.request_delay_max_ms < cfg.request_delay_min_ms:
        raise SystemExit("delay bounds must satisfy 0 <= min <= max")
    return cfg


# ----------------------------
# Entrypoint
# ----------------------------

async def main_async(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    cfg = build_config(args)

    level = getattr(logging, args.log_level)
    log_ext = LoggingExtension(cfg.log_file, level=level)
    root_logger = logging.getLogger("run_resolve")
    root_logger.info("Starting: %s -> %s backend=%s", cfg.input_file, cfg.output_file, cfg.backend)

    try:
        report = await BatchOrchestrator(cfg, resume=args.resume).run()
    except OSError as e:
        root_logger.error("Fatal: could not persist results: %s", e)
        return EXIT_PERSIST_ERROR
    finally:
        log_ext.close()

    if report.state is RunState.FAILED:
        return EXIT_INPUT_ERROR
    return EXIT_OK


def main() -> None:
    sys.exit(asyncio.run(main_async()))

if __name__ == "__main__":
    main()
