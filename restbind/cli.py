"""CLI entry point for restbind.

Works on a descriptor table (a YAML file or a built-in provider table):
list its operations, show the request an invocation would send, or send it.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

from restbind.builder import RequestBuilder
from restbind.config_loader import (
    ConfigError,
    load_descriptor_table,
    load_runtime_config,
    resolve_endpoint,
)
from restbind.errors import RestBindError
from restbind.filters import FilterStage
from restbind.models import DescriptorTable, EmptySuccess, Failure
from restbind.options import RequestOptions
from restbind.parsers import ParserRegistry
from restbind.providers import azure_queue, cloudstack, vcloud


@dataclass(frozen=True)
class Provider:
    """A built-in descriptor table with the parsers and filters it references."""

    table: DescriptorTable
    parsers: Callable[[], ParserRegistry]
    filters: Callable[[], dict[str, FilterStage]] = dict


PROVIDERS: dict[str, Provider] = {
    "cloudstack": Provider(cloudstack.SNAPSHOT_OPERATIONS, cloudstack.snapshot_parsers),
    "azure-queue": Provider(
        azure_queue.QUEUE_OPERATIONS, azure_queue.queue_parsers, azure_queue.queue_filters
    ),
    "vcloud": Provider(vcloud.VCLOUD_OPERATIONS, vcloud.vcloud_parsers),
}


def parse_key_value(value: str) -> tuple[str, str]:
    """Parse KEY=VALUE format.

    Raises:
        argparse.ArgumentTypeError: If format is invalid.
    """
    if "=" not in value:
        raise argparse.ArgumentTypeError(
            f"Invalid format '{value}'. Expected KEY=VALUE (e.g., 'keyword=nightly')"
        )
    key, _, val = value.partition("=")
    if not key:
        raise argparse.ArgumentTypeError(f"Invalid format '{value}'. Key cannot be empty.")
    return (key, val)


@dataclass
class TableSource:
    """Where the descriptor table comes from: a YAML file or a provider name."""

    table: Path | None
    provider: str | None


@dataclass
class ListOperationsArgs:
    """Parsed arguments for list-operations mode."""

    source: TableSource


@dataclass
class BuildArgs:
    """Parsed arguments for build mode."""

    source: TableSource
    endpoint: str
    operation: str
    args: list[str]
    query: list[tuple[str, str]] = field(default_factory=list)
    header: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class CallArgs:
    """Parsed arguments for call mode."""

    source: TableSource
    config: Path
    endpoint_name: str
    operation: str
    args: list[str]
    query: list[tuple[str, str]] = field(default_factory=list)
    header: list[tuple[str, str]] = field(default_factory=list)


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "--table",
        type=Path,
        help="Path to a YAML descriptor table",
    )
    group.add_argument(
        "--provider",
        choices=sorted(PROVIDERS),
        help="Use a built-in provider table",
    )


def _add_invocation_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("operation", help="Operation id to invoke")
    parser.add_argument(
        "args",
        nargs="*",
        metavar="ARG",
        help="Positional arguments, one per non-options binding",
    )
    parser.add_argument(
        "--query",
        type=parse_key_value,
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Add an options query parameter (can be repeated)",
    )
    parser.add_argument(
        "--header",
        type=parse_key_value,
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Add an options header (can be repeated)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with list-operations, build and call subcommands."""
    parser = argparse.ArgumentParser(
        prog="restbind",
        description="Metadata-driven REST client: build and send requests from operation descriptors.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Mode")

    # List-operations subcommand
    list_ops_parser = subparsers.add_parser(
        "list-operations",
        help="List the operations of a descriptor table",
    )
    _add_source_arguments(list_ops_parser)

    # Build subcommand
    build_cmd_parser = subparsers.add_parser(
        "build",
        help="Print the request an operation would send, without sending it",
    )
    _add_source_arguments(build_cmd_parser)
    build_cmd_parser.add_argument(
        "--endpoint",
        type=str,
        required=True,
        help="Base URL, e.g. http://localhost:8080",
    )
    _add_invocation_arguments(build_cmd_parser)

    # Call subcommand
    call_parser = subparsers.add_parser(
        "call",
        help="Send an operation to a configured endpoint and print the outcome",
    )
    _add_source_arguments(call_parser)
    call_parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to runtime config YAML file",
    )
    call_parser.add_argument(
        "--endpoint-name",
        type=str,
        required=True,
        help="Endpoint name from the runtime config",
    )
    _add_invocation_arguments(call_parser)

    return parser


def _source(namespace: argparse.Namespace) -> TableSource:
    return TableSource(table=namespace.table, provider=namespace.provider)


def parse_args(args: list[str] | None = None) -> tuple[ListOperationsArgs | BuildArgs | CallArgs, bool]:
    """Parse command-line arguments.

    Args:
        args: Command-line arguments to parse. If None, uses sys.argv[1:].

    Returns:
        The typed args dataclass for the subcommand and the verbose flag.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.command == "list-operations":
        parsed: ListOperationsArgs | BuildArgs | CallArgs = ListOperationsArgs(
            source=_source(namespace)
        )
    elif namespace.command == "build":
        parsed = BuildArgs(
            source=_source(namespace),
            endpoint=namespace.endpoint,
            operation=namespace.operation,
            args=namespace.args,
            query=namespace.query,
            header=namespace.header,
        )
    elif namespace.command == "call":
        parsed = CallArgs(
            source=_source(namespace),
            config=namespace.config,
            endpoint_name=namespace.endpoint_name,
            operation=namespace.operation,
            args=namespace.args,
            query=namespace.query,
            header=namespace.header,
        )
    else:
        # Should not happen with required=True on subparsers
        parser.error(f"Unknown command: {namespace.command}")
    return parsed, namespace.verbose


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        parsed, verbose = parse_args(argv)
        if verbose:
            logging.basicConfig(
                level=logging.DEBUG,
                format="%(asctime)s %(name)s %(levelname)s %(message)s",
            )

        if isinstance(parsed, ListOperationsArgs):
            return run_list_operations(parsed)
        elif isinstance(parsed, BuildArgs):
            return run_build(parsed)
        else:
            return run_call(parsed)

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


def _load_source(source: TableSource) -> Provider:
    if source.provider is not None:
        return PROVIDERS[source.provider]
    return Provider(load_descriptor_table(source.table), ParserRegistry)


def _invocation_args(table: DescriptorTable, args: BuildArgs | CallArgs) -> list[Any]:
    """Positional strings plus one options value built from --query/--header."""
    call_args: list[Any] = list(args.args)
    if not args.query and not args.header:
        return call_args

    descriptor = table.lookup(args.operation)
    if not descriptor.accepts_options:
        raise RestBindError(f"Operation '{args.operation}' does not accept --query/--header options")

    options = RequestOptions()
    for key, value in args.query:
        options = options.query(key, value)
    for name, value in args.header:
        options = options.header(name, value)

    # Options only follow the fixed bindings
    fixed = len(descriptor.bindings) - 1
    call_args.extend([None] * (fixed - len(call_args)))
    call_args.append(options)
    return call_args


def run_list_operations(args: ListOperationsArgs) -> int:
    """Run list-operations mode.

    Lists every operation with its method, path, bindings and strategies.
    """
    try:
        table = _load_source(args.source).table
    except ConfigError as e:
        print(f"Error loading descriptor table: {e}", file=sys.stderr)
        return 1

    for operation_id in sorted(table):
        descriptor = table[operation_id]
        print(operation_id)
        print(f"  {descriptor.method} {descriptor.path_template}")
        if descriptor.fixed_query:
            fixed = "&".join(f"{k}={v}" for k, v in descriptor.fixed_query)
            print(f"  Fixed query: {fixed}")
        if descriptor.bindings:
            bindings = ", ".join(
                f"{b.role.value}:{b.name}" if b.name else b.role.value
                for b in descriptor.bindings
            )
            print(f"  Bindings: {bindings}")
        print(f"  Parser: {descriptor.parser}, not found: {descriptor.not_found.value}")
        if descriptor.filters:
            print(f"  Filters: {', '.join(descriptor.filters)}")
        print()

    print(f"Total: {len(table)} operations")
    return 0


def run_build(args: BuildArgs) -> int:
    """Run build mode.

    Prints the request line, headers and payload; filters are not applied
    because they may depend on the time of sending.
    """
    try:
        table = _load_source(args.source).table
        builder = RequestBuilder(args.endpoint)
        request = builder.build(
            table.lookup(args.operation), _invocation_args(table, args)
        )
    except ConfigError as e:
        print(f"Error loading descriptor table: {e}", file=sys.stderr)
        return 1
    except (RestBindError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(request.request_line)
    for name, value in request.headers:
        print(f"{name}: {value}")
    if request.content_type:
        print(f"Content-Type: {request.content_type}")
    if request.payload is not None:
        print()
        print(request.payload.decode("utf-8", errors="replace"))
    return 0


def run_call(args: CallArgs) -> int:
    """Run call mode.

    Sends the operation and prints the value as JSON. Failures go to stderr
    with exit code 1.
    """
    from restbind.client import RestClient

    try:
        provider = _load_source(args.source)
        config = load_runtime_config(args.config)
        endpoint = resolve_endpoint(config, args.endpoint_name)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    try:
        with RestClient(
            endpoint,
            provider.table,
            parsers=provider.parsers(),
            filters=provider.filters(),
        ) as client:
            outcome = client.invoke(
                args.operation, *_invocation_args(provider.table, args)
            )
    except RestBindError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if isinstance(outcome, Failure):
        print(
            f"{args.operation} failed: {outcome.kind.value} (HTTP {outcome.status_code}) "
            f"{outcome.message}",
            file=sys.stderr,
        )
        return 1

    if isinstance(outcome, EmptySuccess):
        print(f"(empty: {outcome.absence.value}, HTTP {outcome.status_code})")
        return 0

    print(TypeAdapter(Any).dump_json(outcome.value, indent=2).decode("utf-8"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
