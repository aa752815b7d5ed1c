## Main Execution Script
from controllers import main_client_task, main_gateway_task
from tools.config import DEFAULT_CONFIG, load_config
from tools.errors import ConfigError
from tools.logger import *
from tools.secret_store import FileSecretStore
from use_cases.auth import load_token
import argparse
import asyncio
import os
import secrets
import sys


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Terminal Gateway")
    parser.add_argument(
        "-l",
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set the logging level (use -l or --log-level)",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the gateway (default)")
    serve.add_argument("-c", "--config", help="Path to a JSON config file (mode 0600)")

    client = subparsers.add_parser("client", help="Open an interactive terminal on a gateway")
    client.add_argument("host", help="Gateway host, e.g. 100.64.0.1 or my-mac.ts.net")
    client.add_argument("-p", "--port", type=int, default=DEFAULT_CONFIG["port"])
    client.add_argument("--token-file", default=DEFAULT_CONFIG["token_file"])

    generate = subparsers.add_parser("generate-token", help="Write a new bearer token")
    generate.add_argument("--token-file", default=None)
    generate.add_argument("--show-token", action="store_true", help="Print the new token")

    return parser


def run_serve(args) -> int:
    config = load_config(getattr(args, "config", None))
    return asyncio.run(main_gateway_task(config))


def run_client(args) -> int:
    token = load_token(FileSecretStore(os.path.expanduser(args.token_file)))
    return asyncio.run(main_client_task(args.host, args.port, token))


def run_generate_token(args) -> int:
    token_file = args.token_file or os.environ.get("GATEWAY_TOKEN_FILE") or DEFAULT_CONFIG["token_file"]
    store = FileSecretStore(os.path.expanduser(token_file))
    token = secrets.token_hex(32)
    store.set(token)
    log_info(f"Token written to {store.path}")
    if args.show_token:
        print(token)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    set_log_level(args.log_level)

    commands = {
        None: run_serve,
        "serve": run_serve,
        "client": run_client,
        "generate-token": run_generate_token,
    }
    try:
        return commands[args.command](args)
    except ConfigError as e:
        log_critical(f"Configuration error: {e.message}")
        return 1
    except KeyboardInterrupt:
        log_warning("Keyboard interrupt received, exiting.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
