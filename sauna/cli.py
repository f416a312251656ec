"""CLI entry point for sauna."""

import argparse
import dataclasses
import json
import os
import signal
import sys

import anyio

from sauna import __version__
from sauna.agent import err_console, set_shutdown_requested
from sauna.config import DRY_RUN_ENV, PROVIDER_NAMES
from sauna.runner import RunConfig, run
from sauna.ui import print_error


def _signal_handler(signum: int, frame: object) -> None:
    """Handle termination signals by requesting shutdown."""
    set_shutdown_requested(True)
    raise KeyboardInterrupt


def _install_signal_handlers() -> None:
    """Install the SIGTERM handler; SIGINT already raises KeyboardInterrupt."""
    signal.signal(signal.SIGTERM, _signal_handler)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sauna",
        description="Run coding agents (Claude, Codex) in a loop and stream their work",
    )

    parser.add_argument(
        "prompt",
        nargs="?",
        default=None,
        metavar="PROMPT",
        help="Prompt to send (optional with --interactive)",
    )

    parser.add_argument(
        "-m", "--model",
        default=None,
        help="Model name or alias. Examples: sonnet, opus, haiku, codex, gpt-5.2-codex",
    )

    parser.add_argument(
        "-p", "--provider",
        default=None,
        metavar="NAME",
        help=f"Agent provider: {', '.join(PROVIDER_NAMES)} (default: inferred from --model, else claude)",
    )

    parser.add_argument(
        "--forever",
        action="store_true",
        default=False,
        help="Repeat the prompt until interrupted",
    )

    parser.add_argument(
        "-n", "--count",
        type=_positive_int,
        default=None,
        metavar="N",
        help="Repeat the prompt N times",
    )

    parser.add_argument(
        "-i", "--interactive",
        action="store_true",
        default=False,
        help="Start a multi-turn conversation",
    )

    parser.add_argument(
        "-c", "--context",
        action="append",
        default=[],
        metavar="PATH",
        help="File or directory to reference in the first prompt (repeatable)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Save debug log",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


def _parse_args(argv: list[str] | None = None) -> RunConfig:
    """Parse command line arguments and return a RunConfig.

    Args:
        argv: Argument list; defaults to ``sys.argv[1:]``.

    Returns:
        RunConfig: Configuration object populated from command line arguments.

    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.interactive:
        if args.forever:
            parser.error("--interactive and --forever are mutually exclusive")
        if args.count is not None:
            parser.error("--interactive and --count are mutually exclusive")
    elif not args.prompt:
        parser.error("a prompt is required unless --interactive is set")

    if args.forever and args.count is not None:
        parser.error("--forever and --count are mutually exclusive")

    return RunConfig(
        prompt=args.prompt,
        model=args.model,
        provider=args.provider,
        context=args.context,
        forever=args.forever,
        count=args.count,
        interactive=args.interactive,
        debug=args.debug,
    )


def _is_dry_run() -> bool:
    return os.environ.get(DRY_RUN_ENV, "") not in ("", "0")


def main() -> None:
    """Run the CLI entry point.

    Returns:
        None: This function does not return; it exits via sys.exit().

    Raises:
        SystemExit: Always raised with exit code 0 on success, 130 on keyboard
            interrupt, or 1 on failure.

    """
    _install_signal_handlers()
    config = _parse_args()

    if _is_dry_run():
        print(json.dumps(dataclasses.asdict(config), indent=2))
        sys.exit(0)

    try:
        exit_code = anyio.run(run, config)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        err_console.print()
        print_error(err_console, "Fatal Error", str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
