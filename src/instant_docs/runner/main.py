"""
CLI main entry point.
"""

import argparse
import logging
import sys
from pathlib import Path

from ..api_client import APIClient, APIClientError, Layer
from ..config import Config, ConfigValidationError, create_default_config, load_config

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="instant-docs",
        description="Browse documents on the example backend and fetch layer tokens",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("documents", help="List documents and their layers")

    token_parser = subparsers.add_parser("token", help="Fetch an authentication token for a layer")
    token_parser.add_argument("document_id", type=str, help="Document ID")
    token_parser.add_argument(
        "--layer",
        type=str,
        default="",
        help="Layer name (default: the default layer)",
    )

    subparsers.add_parser("check", help="Test connectivity to the backend")
    subparsers.add_parser("init-config", help="Write a default config file")

    return parser


def create_client(config: Config) -> APIClient:
    return APIClient(
        base_url=config.server.base_url,
        user_id=config.server.user_id,
        password=config.server.password,
        timeout=config.client.timeout_seconds,
        max_retries=config.client.max_retries,
        max_workers=config.client.max_workers,
    )


def cmd_documents(config: Config) -> int:
    """List documents."""
    client = create_client(config)
    try:
        documents = client.list_documents()
    except APIClientError as e:
        print(f"❌ Could not fetch document list: {e}")
        return 1
    finally:
        client.close()

    if not documents:
        print(f"No documents found. Upload one at {client.base_url}")
        return 0

    for doc in documents:
        print(f"  📄 [{doc.identifier}] {doc.title} ({len(doc.tokens)} layer token(s))")

    print(f"\n✓ Found {len(documents)} document(s)")
    return 0


def cmd_token(config: Config, document_id: str, layer_name: str) -> int:
    """Fetch a token for one layer."""
    layer = Layer(document_id=document_id, name=layer_name)
    client = create_client(config)
    try:
        token = client.get_authentication_token(layer)
    except APIClientError as e:
        print(f"❌ Could not fetch authentication token for layer '{layer}': {e}")
        return 1
    finally:
        client.close()

    print(token)
    return 0


def cmd_check(config: Config) -> int:
    """Test backend connectivity."""
    client = create_client(config)
    try:
        ok = client.test_connection()
    finally:
        client.close()

    if not ok:
        print(f"❌ Failed to connect to {config.server.base_url}")
        return 1

    print(f"✓ Connected to {config.server.base_url}")
    return 0


def cmd_init_config(config_path: Path) -> int:
    """Write the default config file."""
    if config_path.exists():
        print(f"❌ {config_path} already exists")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except (ConfigValidationError, OSError, ValueError) as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "documents":
        return cmd_documents(config)
    elif parsed.command == "token":
        return cmd_token(config, parsed.document_id, parsed.layer)
    elif parsed.command == "check":
        return cmd_check(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
