#!/usr/bin/env python3
"""
Asset Publisher Command Line Interface

Commands:
  connect          Check that a container of a profile is writable
  publish          Synchronize a collection into its publishing target
  republish        Publish every resource of a collection one by one
  update-metadata  Reapply content types to published objects
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from .config import PublishConfig, build_collection, load_publish_config
from .constants import CONNECTION_TEST_CONTENT, CONNECTION_TEST_KEY, DEFAULT_COLLECTION_NAME, DEFAULT_CONFIG_PATH
from .exceptions import PublishCancelledError, PublishError
from .logging_config import setup_logging
from .messages import PublishReport
from .storage.base import StorageError

logger = logging.getLogger(__name__)


class ShutdownFlag:
    """Set by SIGINT/SIGTERM; publishing stops between resources once set."""

    def __init__(self) -> None:
        self.requested = False

    def should_continue(self) -> bool:
        return not self.requested

    def install(self) -> None:
        def signal_handler(signum: int, frame: Any) -> None:
            if self.requested:
                print(f"\nReceived second signal {signum}, forcing immediate exit...")
                sys.exit(1)
            print(f"\nReceived signal {signum}, shutting down gracefully...")
            print("Press Control-C again to force immediate exit")
            self.requested = True

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)


def print_report(report: PublishReport) -> None:
    for message in report.messages:
        print(f"  [{message.severity.value}] {message.text}")
    print(
        f"Collection {report.collection}: {report.published:,} uploaded, {report.copied:,} copied, "
        f"{report.skipped:,} unchanged, {report.deleted:,} removed, {report.failed:,} failed"
    )


async def cmd_connect(args, config: PublishConfig) -> int:
    """Write, read back and delete a test object."""
    store = config.get_store(args.profile)
    container = args.container

    print(f'Writing test object "{CONNECTION_TEST_KEY}" into container "{container}" (profile {args.profile})...')
    try:
        await store.put_object(container, CONNECTION_TEST_KEY, CONNECTION_TEST_CONTENT.encode(), "text/plain")
        stream = await store.open_object(container, CONNECTION_TEST_KEY)
        try:
            content = await stream.read()
        finally:
            await stream.close()
        await store.delete_object(container, CONNECTION_TEST_KEY)
    except StorageError as e:
        print(f"❌ Connection test failed: {e}")
        return 1

    if content.decode(errors="replace") != CONNECTION_TEST_CONTENT:
        print(f"❌ Connection test failed: read back {content!r}")
        return 1

    print("✅ Connection test succeeded")
    return 0


async def cmd_publish(args, config: PublishConfig, shutdown: ShutdownFlag) -> int:
    collection = await build_collection(config, args.collection, shutdown.should_continue)
    report = await collection.target.publish_collection(collection)
    print_report(report)
    return 0 if report.success else 1


async def cmd_republish(args, config: PublishConfig, shutdown: ShutdownFlag) -> int:
    """Publish resource by resource, without listing or pruning the target."""
    collection = await build_collection(config, args.collection, shutdown.should_continue)
    target = collection.target
    total = PublishReport(collection=collection.name)

    try:
        async for resource in collection.storage.repository.find_by_collection(collection.name):
            if not shutdown.should_continue():
                raise PublishCancelledError("Republishing was cancelled.")
            report = await target.publish_resource(resource, collection)
            total.published += report.published
            total.copied += report.copied
            total.messages.extend(report.messages)
            for message in report.messages:
                print(f"  [{message.severity.value}] {message.text}")
            if report.published or report.copied:
                print(f"Published {resource.sha1}/{resource.filename}")
    except (PublishError, StorageError) as e:
        print(f"❌ Republishing failed: {e}")
        return 2

    print(
        f"Collection {total.collection}: {total.published + total.copied:,} republished, {total.failed:,} failed"
    )
    return 0 if total.success else 1


async def cmd_update_metadata(args, config: PublishConfig, shutdown: ShutdownFlag) -> int:
    """Reapply the content type of every published resource, in hash order."""
    collection = await build_collection(config, args.collection, shutdown.should_continue)
    target = collection.target
    updated = 0
    failed = 0
    last_sha1 = args.start_sha1

    async for resource in collection.storage.repository.iter_metadata(collection.name, args.start_sha1):
        if not shutdown.should_continue():
            print(f"Stopped. Resume with --start-sha1 {last_sha1}")
            return 1
        try:
            await target.refresh_content_type(resource)
        except StorageError as e:
            failed += 1
            print(f"  ❌ {resource.sha1} ({resource.filename}): {e}")
        else:
            updated += 1
            logger.debug(f"Updated content type of {resource.sha1} to {resource.media_type}")
        last_sha1 = resource.sha1

    print(f"Updated metadata of {updated:,} resources ({failed:,} failed)")
    return 0 if failed == 0 else 1


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="asset-publisher",
        description="Publish content-addressed resources into public object store containers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check that a container is writable
  asset-publisher connect --container assets-public --profile default

  # Synchronize the persistent collection into its target
  asset-publisher publish --config publish_config.json

  # Republish every resource, one by one
  asset-publisher republish --collection persistent

  # Reapply content types, resuming after a given hash
  asset-publisher update-metadata --start-sha1 3f786850e387550fdab836ed7e6dc881de23001b
        """,
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--log-file", type=Path, help="Log file (default: timestamped file in logs/)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_command(name: str, help_text: str) -> argparse.ArgumentParser:
        command_parser = subparsers.add_parser(name, help=help_text)
        command_parser.add_argument(
            "--config", type=Path, default=DEFAULT_CONFIG_PATH, help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})"
        )
        return command_parser

    connect_parser = add_command("connect", "Write, read back and delete a test object")
    connect_parser.add_argument("--container", required=True, help="Container to test")
    connect_parser.add_argument("--profile", default="default", help="Profile to connect with (default: default)")

    for name, help_text in (
        ("publish", "Synchronize a collection into its target"),
        ("republish", "Publish every resource of a collection one by one"),
        ("update-metadata", "Reapply content types to published objects"),
    ):
        command_parser = add_command(name, help_text)
        command_parser.add_argument(
            "--collection",
            default=DEFAULT_COLLECTION_NAME,
            help=f"Collection to process (default: {DEFAULT_COLLECTION_NAME})",
        )
        if name == "update-metadata":
            command_parser.add_argument("--start-sha1", help="Resume after this SHA1 hash")

    return parser


async def main(argv: list[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.log_level, args.log_file)

    try:
        config = load_publish_config(args.config)
    except PublishError as e:
        print(f"❌ {e}")
        return 2

    shutdown = ShutdownFlag()
    try:
        if args.command == "connect":
            return await cmd_connect(args, config)

        shutdown.install()
        if args.command == "publish":
            return await cmd_publish(args, config, shutdown)
        elif args.command == "republish":
            return await cmd_republish(args, config, shutdown)
        elif args.command == "update-metadata":
            return await cmd_update_metadata(args, config, shutdown)
        return 1
    except PublishCancelledError as e:
        print(f"\n{e}")
        return 1
    except (PublishError, StorageError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"❌ {e}")
        return 2
    finally:
        await config.close()


def entry_point() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    entry_point()
