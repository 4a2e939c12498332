"""
CLI commands for vulnerability alerts and matching sweeps.

Provides commands for:
- Listing, filtering and paginating tenant alerts
- Alert statistics and packages at risk
- Alert status updates (acknowledge, resolve, suppress)
- Running a matching sweep against a knowledge base snapshot, once or
  on the configured schedule
"""

from __future__ import annotations

import argparse
import json
from datetime import timedelta
from typing import Any

from vigil.alerting import (
    AlertError,
    AlertLifecycleManager,
    AlertStatus,
    AlertStore,
    InMemoryAlertStore,
    LocalAlertStore,
)
from vigil.config import ConfigurationError, EngineConfiguration, load_config_from_env
from vigil.observability import configure_logging


def _add_store_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to configuration file (JSON or YAML)")
    parser.add_argument("--db", help="Alert database path (overrides configuration)")
    parser.add_argument(
        "--format",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table)",
    )


def add_alerts_parser(subparsers: Any) -> None:
    """Add alerts and sweep parsers to CLI subparsers."""
    alerts_parser = subparsers.add_parser(
        "alerts",
        help="Manage vulnerability alerts",
        description="List, summarize and update per-tenant vulnerability alerts",
    )

    alerts_subparsers = alerts_parser.add_subparsers(
        dest="alerts_action",
        help="Alerts action to perform",
    )

    list_parser = alerts_subparsers.add_parser("list", help="List alerts")
    list_parser.add_argument("--tenant", required=True, help="Tenant ID")
    list_parser.add_argument(
        "--status",
        choices=[s.value for s in AlertStatus],
        help="Filter by status",
    )
    list_parser.add_argument(
        "--severity",
        help="Comma-separated severities to include (e.g. critical,high)",
    )
    list_parser.add_argument("--zero-day", action="store_true", help="Only zero-day alerts")
    list_parser.add_argument("--kev", action="store_true", help="Only KEV-listed alerts")
    list_parser.add_argument("--limit", type=int, help="Page size (default from configuration)")
    list_parser.add_argument("--offset", type=int, default=0, help="Alerts to skip")
    _add_store_arguments(list_parser)

    stats_parser = alerts_subparsers.add_parser("stats", help="Show alert statistics")
    stats_parser.add_argument("--tenant", required=True, help="Tenant ID")
    _add_store_arguments(stats_parser)

    update_parser = alerts_subparsers.add_parser("update", help="Change alert status")
    update_parser.add_argument("--tenant", required=True, help="Tenant ID")
    update_parser.add_argument("alert_id", help="Alert ID")
    update_parser.add_argument(
        "status",
        choices=["acknowledged", "resolved", "suppressed"],
        help="New status",
    )
    _add_store_arguments(update_parser)

    packages_parser = alerts_subparsers.add_parser(
        "packages",
        help="List packages at risk from open alerts",
    )
    packages_parser.add_argument("--tenant", required=True, help="Tenant ID")
    _add_store_arguments(packages_parser)

    sweep_parser = subparsers.add_parser(
        "sweep",
        help="Run a matching sweep",
        description="Match recent vulnerability records against tracked packages and create alerts",
    )
    sweep_parser.add_argument(
        "--kb",
        required=True,
        help="Knowledge base snapshot (JSON or YAML with records and packages)",
    )
    sweep_parser.add_argument("--lookback-hours", type=int, help="Publication window in hours")
    sweep_parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep running the sweep on its schedule until interrupted",
    )
    sweep_parser.add_argument(
        "--schedule",
        help="Schedule expression for --watch, e.g. 'rate(6 hours)' (overrides configuration)",
    )
    _add_store_arguments(sweep_parser)


def _get_config(args: argparse.Namespace) -> EngineConfiguration:
    path = getattr(args, "config", None)
    config = EngineConfiguration.from_file(path) if path else load_config_from_env()
    if getattr(args, "db", None):
        config.alerting.backend = "local"
        config.alerting.db_path = args.db
    return config


def _get_store(config: EngineConfiguration) -> AlertStore:
    if config.alerting.backend == "memory":
        return InMemoryAlertStore()
    if config.alerting.backend == "local":
        return LocalAlertStore(config.alerting.db_path)
    raise ConfigurationError(f"Unknown alert backend: {config.alerting.backend}")


def _get_manager(config: EngineConfiguration) -> AlertLifecycleManager:
    return AlertLifecycleManager(
        store=_get_store(config),
        zero_day_window=timedelta(hours=config.alerting.zero_day_hours),
    )


def cmd_alerts(args: argparse.Namespace) -> int:
    """Handle alerts commands."""
    action = getattr(args, "alerts_action", None)

    if action is None:
        print("Error: No alerts action specified")
        print("Use 'vigil alerts --help' for available actions")
        return 1

    handlers = {
        "list": _handle_list,
        "stats": _handle_stats,
        "update": _handle_update,
        "packages": _handle_packages,
    }

    handler = handlers.get(action)
    if handler is None:
        print(f"Error: Unknown action '{action}'")
        return 1

    try:
        config = _get_config(args)
        return handler(args, config, _get_manager(config))
    except (AlertError, ConfigurationError, ValueError) as e:
        print(f"Error: {e}")
        return 1


def _handle_list(
    args: argparse.Namespace,
    config: EngineConfiguration,
    manager: AlertLifecycleManager,
) -> int:
    severities = [s.strip() for s in args.severity.split(",") if s.strip()] if args.severity else None

    page = manager.list_alerts(
        args.tenant,
        status=AlertStatus(args.status) if args.status else None,
        severities=severities,
        is_zero_day=True if args.zero_day else None,
        is_kev=True if args.kev else None,
        limit=args.limit if args.limit is not None else config.alerting.page_size,
        offset=args.offset,
    )

    if args.format == "json":
        print(json.dumps(page.to_dict(), indent=2))
        return 0

    print(f"Alerts for {args.tenant}: showing {len(page.alerts)} of {page.total}")
    if not page.alerts:
        return 0

    print()
    print(f"{'ID':<18} {'Vulnerability':<18} {'Severity':<10} {'Status':<14} {'Flags':<10} Packages")
    print("-" * 90)
    for alert in page.alerts:
        flags = ",".join(
            flag for flag, on in (("0day", alert.is_zero_day), ("kev", alert.is_kev)) if on
        )
        packages = ", ".join(
            f"{p.name}@{p.version}" if p.version else p.name for p in alert.affected_packages
        )
        print(
            f"{alert.id:<18} {alert.vulnerability_id:<18} {alert.severity:<10} "
            f"{alert.status.value:<14} {flags or '-':<10} {packages}"
        )
    return 0


def _handle_stats(
    args: argparse.Namespace,
    config: EngineConfiguration,
    manager: AlertLifecycleManager,
) -> int:
    stats = manager.get_stats(args.tenant)

    if args.format == "json":
        print(json.dumps(stats.to_dict(), indent=2))
        return 0

    print(f"Alert Statistics for {args.tenant}")
    print("=" * 50)
    print(f"Total: {stats.total}")
    print(f"Open: {stats.open}")
    print(f"Zero-days: {stats.zero_days}")
    print(f"KEV: {stats.kev}")
    if stats.by_severity:
        print()
        print("By severity:")
        for severity, count in sorted(stats.by_severity.items(), key=lambda x: -x[1]):
            print(f"  {severity:<10} {count}")
    if stats.recent_alerts:
        print()
        print("Most recent:")
        for alert in stats.recent_alerts:
            created = alert.created_at.isoformat() if alert.created_at else "-"
            print(f"  {alert.vulnerability_id:<18} {alert.severity:<10} {created}")
    return 0


def _handle_update(
    args: argparse.Namespace,
    config: EngineConfiguration,
    manager: AlertLifecycleManager,
) -> int:
    alert = manager.update_status(args.tenant, args.alert_id, args.status)

    if args.format == "json":
        print(json.dumps(alert.to_dict(), indent=2))
    else:
        print(f"Alert {alert.id} is now {alert.status.value}")
    return 0


def _handle_packages(
    args: argparse.Namespace,
    config: EngineConfiguration,
    manager: AlertLifecycleManager,
) -> int:
    packages = manager.get_packages_at_risk(args.tenant)

    if args.format == "json":
        print(json.dumps({
            "packages": [p.to_dict() for p in packages],
            "total": len(packages),
        }, indent=2))
        return 0

    print(f"Packages at risk for {args.tenant} ({len(packages)}):")
    if packages:
        print()
        print(f"{'Package':<30} {'Version':<14} {'Alerts':>7} {'Critical':>9}")
        print("-" * 64)
        for p in packages:
            print(f"{p.name:<30} {p.version or '-':<14} {p.alert_count:>7} {p.critical_count:>9}")
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    """Handle sweep command."""
    from vigil.matching import InMemoryKnowledgeBase
    from vigil.scheduling import MatchingSweep, SweepScheduler

    try:
        config = _get_config(args)
        if args.lookback_hours is not None:
            config.sweep.lookback_hours = args.lookback_hours
        if args.schedule:
            config.sweep.schedule = args.schedule
        if not (getattr(args, "verbose", 0) or getattr(args, "log_format", None)):
            configure_logging(level=config.logging.level, format=config.logging.format)

        knowledge_base = InMemoryKnowledgeBase.from_file(args.kb)
        sweep = MatchingSweep.from_config(config, knowledge_base, _get_manager(config))
        scheduler = SweepScheduler.from_config(config, sweep) if args.watch else None
    except (ConfigurationError, OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    if scheduler is not None:
        return _watch(scheduler, args.format)

    result = sweep.run()
    _print_sweep_result(result, args.format)
    return 0 if result.success else 1


def _watch(scheduler: Any, output_format: str) -> int:
    """Run the sweep now, then on its schedule until interrupted."""
    if not scheduler.job.enabled:
        print("Error: Scheduled sweeps are disabled (sweep.enabled is false)")
        return 1

    scheduler.add_callback(lambda result: _print_sweep_result(result, output_format))
    scheduler.run_now()
    scheduler.start()
    print(
        f"Watching on {scheduler.job.schedule.expression}, "
        f"next run {scheduler.job.next_run.isoformat()} (Ctrl+C to stop)"
    )

    try:
        scheduler.wait()
    except KeyboardInterrupt:
        print("\nSweep watch interrupted.")
    finally:
        scheduler.stop()

    return 0


def _print_sweep_result(result: Any, output_format: str) -> None:
    if output_format == "json":
        print(json.dumps(result.to_dict(), indent=2))
        return

    print(f"Sweep {result.sweep_id}")
    print(f"Records checked: {result.records_checked}")
    print(f"Packages checked: {result.packages_checked}")
    print(f"Matches: {result.matches}")
    print(f"Alerts created: {result.alerts_created}")
    if result.record_errors or result.alert_errors:
        print(f"Errors: {result.record_errors} records, {result.alert_errors} alerts")
