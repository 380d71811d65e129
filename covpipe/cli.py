"""CLI entrypoint for covpipe."""

from __future__ import annotations

import argparse
import signal
import sys
from pathlib import Path
from types import FrameType

from .config import ConfigError, load_config
from .logging import configure_logging, get_logger
from .orchestrator import EXIT_FAILURE, Pipeline

EXIT_INTERRUPTED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="covpipe",
        description="Build workspace test binaries, run them under kcov and upload the reports.",
    )
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the workspace root (defaults to current directory).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Increase log verbosity and echo every command executed.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (defaults to <path>/.covpipe.yml when present).",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write the log, with timestamps, to this file.",
    )
    return parser


def _raise_interrupt(signum: int, frame: FrameType | None) -> None:
    raise KeyboardInterrupt(f"received signal {signum}")


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint; returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), log_file=args.log_file)
    logger = get_logger("cli")

    try:
        config = load_config(Path(args.path), config_path=args.config)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_FAILURE

    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        result = Pipeline(config).run()
    except KeyboardInterrupt:
        logger.error("Coverage run interrupted")
        return EXIT_INTERRUPTED
    except Exception as exc:  # pragma: no cover - defensive guard
        logger.exception("Coverage run failed: %s", exc)
        return EXIT_FAILURE
    finally:
        signal.signal(signal.SIGTERM, previous)

    return result.exit_code


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
