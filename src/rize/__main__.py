"""Entry point for `python -m rize` / `rize`.

Subcommands:
    rize shell                  Interactive zsh in the project sandbox
    rize claude|codex|opencode|gemini [args...]
    rize exec <cmd...>          Run a command in the sandbox
    rize services up|down|ps|logs [-f]|restart
    rize init                   Create default config files
    rize update                 Pull the latest sandbox image
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from rize import ui
from rize.config import ConfigError
from rize.logger import bind_invocation, logger

AGENTS = ("claude", "codex", "opencode", "gemini")
PASSTHROUGH = (*AGENTS, "exec")

_EPILOG = """\
Environment Variables:
  RIZE_IMAGE         Docker image to use (default: alienxp03/rize:latest)
  LOG_LEVEL          Diagnostic log level (default: WARNING)

Config Files:
  ~/.rize/config.yml                        Global environment variables
  ~/.rize/projects/{name}/config.yml        Per-project config (services + env)
  ~/.config/rize/docker-compose.yml         Shared services
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rize",
        description="Rize - Secure AI Agent Sandbox",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("shell", help="Start interactive shell (zsh)")
    for name in AGENTS:
        p = sub.add_parser(name, help=f"Run the {name} agent")
        p.add_argument("args", nargs=argparse.REMAINDER)

    p = sub.add_parser("exec", help="Run a shell command directly")
    p.add_argument("args", nargs=argparse.REMAINDER)

    services = sub.add_parser("services", help="Manage auxiliary services")
    services_sub = services.add_subparsers(dest="action", required=True)
    services_sub.add_parser("up", help="Start all enabled services")
    services_sub.add_parser("down", help="Stop all services")
    services_sub.add_parser("ps", help="List running services")
    logs = services_sub.add_parser("logs", help="View service logs")
    logs.add_argument("-f", "--follow", action="store_true")
    services_sub.add_parser("restart", help="Restart services")

    sub.add_parser("init", help="Create default config files")
    sub.add_parser("update", help="Pull the latest sandbox image")
    sub.add_parser("help", help="Show this help message")
    return parser


def parse_args(parser: argparse.ArgumentParser, argv: list[str]) -> argparse.Namespace:
    # argparse treats a leading "-x" after the subcommand as its own option
    # even with REMAINDER, so pass-through commands bypass it entirely.
    if argv and argv[0] in PASSTHROUGH:
        return argparse.Namespace(command=argv[0], args=list(argv[1:]))
    return parser.parse_args(argv)


async def dispatch(args: argparse.Namespace, parser: argparse.ArgumentParser) -> None:
    from rize import commands

    match args.command:
        case "shell":
            await commands.shell()
        case name if name in AGENTS:
            await commands.agent(name, args.args)
        case "exec":
            if not args.args:
                parser.error("exec requires a command")
            await commands.exec_command(args.args)
        case "services":
            match args.action:
                case "up":
                    await commands.services_up()
                case "down":
                    await commands.services_down()
                case "ps":
                    await commands.services_ps()
                case "logs":
                    await commands.services_logs(follow=args.follow)
                case "restart":
                    await commands.services_restart()
        case "init":
            commands.init()
        case "update":
            await commands.update()
        case _:
            parser.print_help()


def main(argv: list[str] | None = None) -> int:
    from docker.errors import DockerException
    from requests.exceptions import RequestException

    from rize.sandbox import CommandFailedError, SandboxError

    parser = build_parser()
    args = parse_args(parser, sys.argv[1:] if argv is None else argv)
    bind_invocation(args.command)

    try:
        asyncio.run(dispatch(args, parser))
    except CommandFailedError as exc:
        ui.error(str(exc))
        return exc.exit_code
    except (SandboxError, ConfigError) as exc:
        ui.error(str(exc))
        return 1
    except (DockerException, RequestException, OSError) as exc:
        # unwrapped engine transport errors, or a vanished working directory
        logger.debug("Unhandled failure", exc_info=True)
        ui.error(f"{type(exc).__name__}: {exc}")
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
