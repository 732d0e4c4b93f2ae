"""Command line entry point: build a Dockerfile or parse a saved build transcript."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv

from .common.errors import ImageBuildError
from .core.config import BuilderConfig, load_builder_config
from .runtime.orchestrator import BuildOrchestrator, ImageBuildResult
from .runtime.output_parser import ParseResult, parse_build_output, parse_rest_output

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INCOMPLETE = 2


def configure_logging(verbose: bool) -> None:
    """Configure root logging based on verbosity level."""
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("docker").setLevel(logging.WARNING)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Build Dockerfiles and report the build steps.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Build a Dockerfile into a tagged image.")
    build.add_argument("dockerfile", type=Path, help="Path to the stored Dockerfile.")
    build.add_argument("--name", dest="dockerfile_name", default="Dockerfile", help="File name inside the build context.")
    build.add_argument("--namespace", required=True, help="Namespace (realm) owning the repository.")
    build.add_argument("--repository", required=True, help="Repository the image belongs to.")
    build.add_argument("--image", dest="image_name", required=True, help="Image name, as <name>[:<tag>].")
    build.add_argument("--config", type=Path, default=None, help="JSON or YAML configuration file.")

    parse = subparsers.add_parser("parse", help="Parse a saved build transcript.")
    parse.add_argument("transcript", type=Path, help="File holding the build output.")
    parse.add_argument(
        "--json-stream",
        action="store_true",
        help="The file holds the engine's JSON-lines build stream instead of plain text.",
    )
    return parser.parse_args(argv)


def run_build(args: argparse.Namespace) -> int:
    config = load_builder_config(args.config) if args.config else BuilderConfig()
    orchestrator = BuildOrchestrator.from_config(config)
    result = orchestrator.build_dockerfile(
        args.dockerfile,
        args.dockerfile_name,
        args.namespace,
        args.repository,
        args.image_name,
    )
    _print_build_result(result)
    return EXIT_OK if result.success else EXIT_ERROR


def run_parse(args: argparse.Namespace) -> int:
    if args.json_stream:
        with args.transcript.open("rb") as body:
            parsed = parse_rest_output(body)
    else:
        parsed = parse_build_output(args.transcript.read_text(encoding="utf-8", errors="replace"))
    print(parsed.output.as_json())
    return _exit_code_for(parsed)


def _exit_code_for(parsed: ParseResult) -> int:
    if parsed.complete:
        return EXIT_OK
    if parsed.incomplete:
        logger.warning("Transcript ended before a final image id")
        return EXIT_INCOMPLETE
    logger.error("%s", parsed.error)
    return EXIT_ERROR


def _print_build_result(result: ImageBuildResult) -> None:
    for issue in result.issues:
        log = logger.error if issue.is_error() else logger.warning
        log("[%s] %s", issue.code, issue.message)
    payload = result.output.to_wire() if result.output else None
    print(json.dumps({"Image": result.image_full_name, "Success": result.success, "BuildOutput": payload}))


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the imagebuild command."""
    load_dotenv()
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.verbose)

    try:
        if args.command == "build":
            return run_build(args)
        return run_parse(args)
    except ImageBuildError as exc:
        logger.error("%s", exc)
        return EXIT_ERROR
    except OSError as exc:
        logger.error("%s", exc)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
