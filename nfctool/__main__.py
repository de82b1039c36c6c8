"""Command-line entry point: ``python -m nfctool [console|serve]``."""

import argparse
import logging

from nfctool.config import API_HOST, API_PORT, READER_BACKEND
from nfctool.console import CommandDispatcher, run_console
from nfctool.reader.factory import BACKENDS, open_reader


def main(argv=None):
    parser = argparse.ArgumentParser(prog="nfctool", description="MIFARE Classic / Ultralight multi-tool")
    parser.add_argument("--reader", choices=BACKENDS, default=READER_BACKEND,
                        help="reader backend (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("console", help="interactive command console (default)")
    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default=API_HOST)
    serve.add_argument("--port", type=int, default=API_PORT)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "serve":
        import uvicorn

        from nfctool.main import create_app
        uvicorn.run(create_app(open_reader(args.reader)), host=args.host, port=args.port)
        return

    reader = open_reader(args.reader)
    try:
        run_console(CommandDispatcher(reader))
    finally:
        reader.close()


if __name__ == "__main__":
    main()
