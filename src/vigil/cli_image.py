"""
CLI commands for container image analysis.

Provides commands for:
- Image metadata (manifest, config, base image)
- Vulnerability scanning with risk score
- Manifest digest verification
- Layer listing and repository tags
- Supported registries
"""

from __future__ import annotations

import argparse
import json
from typing import Any

from vigil.config import ConfigurationError, EngineConfiguration, load_config_from_env
from vigil.registry import RegistryCredentials, RegistryError, RegistryType


def _add_common_arguments(parser: argparse.ArgumentParser, with_image: bool = True) -> None:
    if with_image:
        parser.add_argument("image", help="Image reference (e.g. nginx:1.25, ghcr.io/org/app@sha256:...)")
    parser.add_argument("--username", help="Registry username")
    parser.add_argument("--password", help="Registry password")
    parser.add_argument("--token", help="Registry bearer token")
    parser.add_argument(
        "--registry-type",
        choices=[t.value for t in RegistryType],
        help="Registry type for hosts that cannot be classified by name",
    )
    parser.add_argument("--config", help="Path to configuration file (JSON or YAML)")
    parser.add_argument(
        "--format",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table)",
    )


def add_image_parser(subparsers: Any) -> None:
    """Add image and registries parsers to CLI subparsers."""
    image_parser = subparsers.add_parser(
        "image",
        help="Analyze container images in remote registries",
        description="Fetch image metadata, scan for vulnerabilities and verify digests",
    )

    image_subparsers = image_parser.add_subparsers(
        dest="image_action",
        help="Image action to perform",
    )

    info_parser = image_subparsers.add_parser("info", help="Show image metadata")
    _add_common_arguments(info_parser)

    scan_parser = image_subparsers.add_parser("scan", help="Scan image for vulnerabilities")
    _add_common_arguments(scan_parser)
    scan_parser.add_argument(
        "--severity",
        choices=["critical", "high", "medium", "low", "unknown"],
        help="Only list vulnerabilities of this severity",
    )

    verify_parser = image_subparsers.add_parser("verify", help="Verify manifest digest")
    _add_common_arguments(verify_parser)
    verify_parser.add_argument("--expected-digest", help="Digest the manifest must hash to")

    layers_parser = image_subparsers.add_parser("layers", help="List image layers")
    _add_common_arguments(layers_parser)

    tags_parser = image_subparsers.add_parser("tags", help="List repository tags")
    tags_parser.add_argument("repository", help="Repository (e.g. nginx, ghcr.io/org/app)")
    _add_common_arguments(tags_parser, with_image=False)

    registries_parser = subparsers.add_parser(
        "registries",
        help="List supported container registries",
    )
    registries_parser.add_argument(
        "--format",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table)",
    )


def _get_config(args: argparse.Namespace) -> EngineConfiguration:
    path = getattr(args, "config", None)
    if path:
        return EngineConfiguration.from_file(path)
    return load_config_from_env()


def _get_credentials(args: argparse.Namespace) -> RegistryCredentials | None:
    if not (args.username or args.password or args.token or args.registry_type):
        return None
    return RegistryCredentials(
        type=RegistryType.from_string(args.registry_type) if args.registry_type else RegistryType.CUSTOM,
        username=args.username,
        password=args.password,
        token=args.token,
    )


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{size} B"


def cmd_image(args: argparse.Namespace) -> int:
    """Handle image commands."""
    action = getattr(args, "image_action", None)

    if action is None:
        print("Error: No image action specified")
        print("Use 'vigil image --help' for available actions")
        return 1

    handlers = {
        "info": _handle_info,
        "scan": _handle_scan,
        "verify": _handle_verify,
        "layers": _handle_layers,
        "tags": _handle_tags,
    }

    handler = handlers.get(action)
    if handler is None:
        print(f"Error: Unknown action '{action}'")
        return 1

    from vigil.scanner import ImageAnalyzer

    try:
        analyzer = ImageAnalyzer.from_config(_get_config(args))
        return handler(args, analyzer)
    except (ConfigurationError, RegistryError) as e:
        print(f"Error: {e}")
        return 1


def _handle_info(args: argparse.Namespace, analyzer: Any) -> int:
    info = analyzer.get_image_info(args.image, _get_credentials(args))

    if args.format == "json":
        print(json.dumps(info.to_dict(), indent=2))
        return 0

    print(f"Image: {info.image.full_name}")
    if info.image.digest:
        print(f"Digest: {info.image.digest}")
    print(f"Platform: {info.os}/{info.architecture}")
    print(f"Created: {info.created_at or '-'}")
    print(f"Size: {_format_size(info.total_size)} in {info.layer_count} layers")
    print(f"Base image: {info.base_image or 'unknown'}")
    if info.labels:
        print("Labels:")
        for key, value in sorted(info.labels.items()):
            print(f"  {key}={value}")
    return 0


def _handle_scan(args: argparse.Namespace, analyzer: Any) -> int:
    result = analyzer.scan_image(args.image, _get_credentials(args))

    vulnerabilities = result.vulnerabilities
    if args.severity:
        vulnerabilities = [v for v in vulnerabilities if v.severity.value == args.severity]

    if args.format == "json":
        data = result.to_dict()
        data["vulnerabilities"] = [v.to_dict() for v in vulnerabilities]
        print(json.dumps(data, indent=2))
        return 0

    summary = result.summary
    print(f"Image: {result.image.full_name}")
    print(f"Scanner: {result.scanner_name}")
    print(f"Risk score: {result.risk_score}/100")
    print(
        f"Vulnerabilities: {summary.total} "
        f"(critical {summary.critical}, high {summary.high}, "
        f"medium {summary.medium}, low {summary.low})"
    )
    print(f"Fixable: {result.fixable_count}")

    if vulnerabilities:
        print()
        print(f"{'CVE':<18} {'Severity':<10} {'Package':<16} {'Installed':<12} {'Fixed':<12}")
        print("-" * 70)
        for v in vulnerabilities:
            print(
                f"{v.cve_id:<18} {v.severity.value:<10} {v.package:<16} "
                f"{v.installed_version:<12} {v.fixed_version or '-':<12}"
            )
    return 0


def _handle_verify(args: argparse.Namespace, analyzer: Any) -> int:
    result = analyzer.verify_image(args.image, args.expected_digest, _get_credentials(args))

    if args.format == "json":
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"Digest: {result.digest}")
        if result.expected_digest:
            print(f"Expected: {result.expected_digest}")
        print(f"Match: {'Yes' if result.match else 'No'}")

    return 0 if result.match else 2


def _handle_layers(args: argparse.Namespace, analyzer: Any) -> int:
    report = analyzer.get_layer_info(args.image, _get_credentials(args))

    if args.format == "json":
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    print(f"Image: {report.image.full_name}")
    print(f"{'#':<4} {'Size':>10}  {'Digest'}")
    print("-" * 90)
    for layer in report.layers:
        print(f"{layer.index:<4} {_format_size(layer.size):>10}  {layer.digest}")
    print("-" * 90)
    print(f"Total: {_format_size(report.total_size)} in {len(report.layers)} layers")
    return 0


def _handle_tags(args: argparse.Namespace, analyzer: Any) -> int:
    tags = analyzer.list_tags(args.repository, _get_credentials(args))

    if args.format == "json":
        print(json.dumps({"repository": args.repository, "tags": tags}, indent=2))
    else:
        print(f"Tags for {args.repository} ({len(tags)}):")
        for tag in tags:
            print(f"  {tag}")
    return 0


def cmd_registries(args: argparse.Namespace) -> int:
    """Handle registries command."""
    from vigil.scanner import ImageAnalyzer

    registries = ImageAnalyzer.supported_registries()

    if args.format == "json":
        print(json.dumps({"registries": registries}, indent=2))
        return 0

    print("Supported Registries")
    print("=" * 70)
    for entry in registries:
        auth = entry.get("auth_method", "token endpoint")
        visibility = "public" if entry["public"] else "private"
        print(f"{entry['name']} [{entry['type']}]")
        print(f"  Host: {entry['registry']}")
        print(f"  Auth: {auth} ({visibility})")
    return 0
