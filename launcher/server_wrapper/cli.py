from __future__ import annotations
import argparse
import json
import sys
from typing import List
from pydantic import ValidationError
from .api import create_app, serve_in_background
from .argv import decode_argv
from .console import ConsoleBridge
from .errors import EXIT_CONFIG, RemoteProtocolError, WrapperError
from .log_mirror import LogMirror
from .logging_setup import get_logger, setup_logging
from .process_runner import ProcessRunner
from .rcon import create_client
from .settings import Settings
from .supervisor import Supervisor

log = get_logger("server_wrapper.cli")


def run(settings: Settings, tokens: List[str]) -> int:
    log.info("=== Starting server wrapper ===")
    argv = decode_argv(settings, tokens)
    ProcessRunner(settings.work_dir).resolve_executable(argv[0])
    remote = create_client(settings)

    mirror = LogMirror(settings.latest_log_path)
    mirror.open(rotate=True)
    try:
        bridge = ConsoleBridge(settings, mirror, remote)
        supervisor = Supervisor(settings, argv, mirror=mirror, bridge=bridge)
        supervisor.install_signal_handlers()
        bridge.start()
        if settings.api_enabled:
            serve_in_background(create_app(supervisor, bridge), settings.api_host, settings.api_port,
                                settings.log_level)
        code = supervisor.run()
        log.info("=== Server wrapper finished (exit code %s) ===", code)
        return code
    finally:
        if remote is not None:
            remote.close()
        mirror.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="server-wrapper")
    sub = parser.add_subparsers(dest="cmd", required=True)

    run_p = sub.add_parser("run", help="Start and supervise the server")
    run_p.add_argument("tokens", nargs=argparse.REMAINDER,
                       help="Legacy startup command tokens (used when no STARTUP* source is set)")

    argv_p = sub.add_parser("argv", help="Print the decoded startup argument vector as JSON and exit")
    argv_p.add_argument("tokens", nargs=argparse.REMAINDER)

    rcon_p = sub.add_parser("rcon", help="Send one command over RCON and print the reply")
    rcon_p.add_argument("command", nargs=argparse.REMAINDER)

    args = parser.parse_args(argv)
    try:
        settings = Settings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG
    setup_logging(settings)

    try:
        if args.cmd == "argv":
            print(json.dumps(decode_argv(settings, args.tokens), indent=2, ensure_ascii=False))
            return 0

        if args.cmd == "rcon":
            client = create_client(settings)
            if client is None:
                log.error("RCON_PASS is not set.")
                return EXIT_CONFIG
            try:
                print(client.send(" ".join(args.command)))
            except RemoteProtocolError as e:
                log.error("%s", e)
                return 1
            finally:
                client.close()
            return 0

        if args.cmd == "run":
            return run(settings, args.tokens)
    except WrapperError as e:
        log.error("%s", e)
        return e.exit_code

    return 2
