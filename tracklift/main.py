"""Main entry point for the tracklift CLI."""

import argparse
import logging

from tracklift.config_manager.args_handler import (
    add_client_config_args,
    add_server_config_args,
    handle_queue,
    handle_retry,
    handle_serve,
    handle_upload,
)


def main() -> None:
    """Handlers for tracklift CLI commands."""
    parser = argparse.ArgumentParser(
        prog="tracklift",
        description="Chunked, resumable audio uploads",
    )
    parser.add_argument(
        "--log-level",
        "--log_level",
        dest="log_level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    parser.add_argument(
        "--config",
        help="YAML file with 'client' and 'server' sections.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # tracklift serve [options...]
    serve_parser = subparsers.add_parser("serve", help="Run the upload server.")
    add_server_config_args(serve_parser)
    serve_parser.set_defaults(handler=handle_serve)

    # tracklift upload FILE... [options...]
    upload_parser = subparsers.add_parser("upload", help="Upload audio files.")
    upload_parser.add_argument("files", nargs="+", help="Files to upload.")
    add_client_config_args(upload_parser)
    upload_parser.set_defaults(handler=handle_upload)

    queue_parser = subparsers.add_parser("queue", help="Show the persisted queue.")
    add_client_config_args(queue_parser)
    queue_parser.set_defaults(handler=handle_queue)

    retry_parser = subparsers.add_parser(
        "retry", help="Re-queue failed uploads and run them."
    )
    add_client_config_args(retry_parser)
    retry_parser.set_defaults(handler=handle_retry)

    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args.handler(args)


if __name__ == "__main__":
    main()
