"""
Command-line front end: hash files and folders, streaming engine events
to stdout as JSON lines.
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import signal
import sys
from typing import List, Optional, TextIO

from . import __version__
from .errors import InvalidRunRequest
from .hash_manager import HashManager
from .models import AlgorithmId, EngineConfig, Event


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pyhashlib",
        description="Compute several digests of files and folders in one pass per file.",
    )
    parser.add_argument("paths", nargs="+", help="Files and/or directories to hash")
    parser.add_argument(
        "-a", "--algorithm",
        dest="algorithms",
        action="append",
        metavar="ALGO",
        help=f"Digest algorithm, repeatable ({', '.join(a.value for a in AlgorithmId)}); "
             f"default: sha256",
    )
    parser.add_argument("-j", "--jobs", type=int, help="Files hashed in parallel (default: CPU count)")
    parser.add_argument("--timeout", type=float, help="Per-file timeout in seconds")
    parser.add_argument("--config", help="JSON file with engine options")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_config(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.load(args.config) if args.config else EngineConfig()
    overrides = {}
    if args.jobs is not None:
        overrides["max_concurrent"] = args.jobs
    if args.timeout is not None:
        overrides["file_timeout"] = args.timeout
    return dataclasses.replace(config, **overrides)


async def run(args: argparse.Namespace, out: TextIO) -> int:
    config = load_config(args)
    manager = HashManager(
        config=config,
        log_file=args.log_file,
        log_level=logging.DEBUG if args.verbose else logging.INFO,
    )

    def write(event: Event) -> None:
        out.write(json.dumps(event.to_dict()) + "\n")
        out.flush()

    manager.listen(None, write)
    try:
        hash_run = await manager.select_files(args.paths, args.algorithms or ["sha256"])

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, hash_run.cancel)
        except (NotImplementedError, RuntimeError):
            pass  # no signal support on this platform/thread

        summary = await manager.wait_idle()
    finally:
        await manager.close()

    return 0 if summary.succeeded else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return asyncio.run(run(args, sys.stdout))
    except (InvalidRunRequest, ValueError) as e:
        parser.error(str(e))  # exits with status 2
    except OSError as e:
        parser.error(f"cannot read config: {e}")


if __name__ == "__main__":
    sys.exit(main())
