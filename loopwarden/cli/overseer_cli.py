#!/usr/bin/env python3
"""
Overseer CLI Tool
=================

Command-line interface for inspecting loops and the knowledge store.

Usage:
    loopwarden report LOOP_ID [--output PATH]
    loopwarden health LOOP_ID
    loopwarden resume LOOP_ID REASON
    loopwarden memory stats|query|verify
    loopwarden staging stats
    loopwarden providers
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from loopwarden.config import OverseerConfig
from loopwarden.memory import CorruptionError, MemoryPromotion, SemanticMemory
from loopwarden.overseer import Overseer
from loopwarden.output import (
    console,
    create_table,
    print_error,
    print_error_panel,
    print_header,
    print_info,
    print_key_value_table,
    print_list,
    print_markdown,
    print_muted,
    print_success,
    print_table,
    print_warning,
    severity_markup,
    spinner,
    setup_rich_logging,
    status_markup,
)
from loopwarden.providers import create_provider, list_providers


def get_config(args) -> OverseerConfig:
    """Load config, then apply directory overrides from args."""
    config = OverseerConfig.load(Path(args.config) if args.config else None)
    if getattr(args, "storage", None):
        config.storage_path = args.storage
    if getattr(args, "knowledge_dir", None):
        config.knowledge_dir = args.knowledge_dir
    return config


def load_overseer(args, config: OverseerConfig) -> Overseer:
    try:
        return Overseer.load(args.loop_id, config.storage_path, config=config)
    except FileNotFoundError as e:
        print_error(str(e))
        sys.exit(1)
    except (ValueError, KeyError) as e:
        print_error(f"Overseer log for {args.loop_id} is unreadable: {e}")
        sys.exit(1)


def load_memory(config: OverseerConfig) -> SemanticMemory:
    return SemanticMemory(config.knowledge_dir)


# =============================================================================
# Loop commands
# =============================================================================

def cmd_report(args):
    """Print or write the markdown report for a loop."""
    config = get_config(args)
    overseer = load_overseer(args, config)
    report = overseer.generate_report()

    if args.output:
        Path(args.output).write_text(report, encoding="utf-8")
        print_success(f"Report written to: {args.output}")
    else:
        print_markdown(report)


def cmd_health(args):
    """Show current health and detection counts for a loop."""
    config = get_config(args)
    overseer = load_overseer(args, config)
    health = overseer.get_health()
    metrics = health["metrics"]

    print_header(f"Loop Health: {overseer.loop_id}")
    print_key_value_table({
        "Task": health["taskDescription"],
        "Status": health["status"],
        "Iterations": health["totalIterations"],
        "Health Checks": metrics["totalHealthChecks"],
        "Paused": "yes" if health["isPaused"] else "no",
    })

    recent = overseer.get_log()[-5:]
    if recent:
        console.print()
        table = create_table(title="Recent Health Checks", columns=["Iteration", "Status", "Detections"])
        for check in recent:
            detections = ", ".join(
                f"{d.type} ({severity_markup(d.severity)})" for d in check.detections
            ) or "[lw.muted]none[/]"
            table.add_row(f"[lw.number]{check.iteration_number}[/]", status_markup(check.status), detections)
        print_table(table)

        latest = recent[-1]
        recommendations = [r for d in latest.detections for r in d.recommendations]
        if recommendations:
            print_header("Recommendations")
            print_list(recommendations, numbered=True)


def cmd_resume(args):
    """Clear a loop's pause after human review."""
    config = get_config(args)
    overseer = load_overseer(args, config)

    if overseer.resume(args.reason):
        print_success(f"Loop {overseer.loop_id} resumed: {args.reason}")
    else:
        print_warning(f"Loop {overseer.loop_id} is not paused")
        sys.exit(1)


# =============================================================================
# Memory commands
# =============================================================================

def cmd_memory_stats(args):
    config = get_config(args)
    try:
        stats = load_memory(config).get_stats()
    except CorruptionError as e:
        print_error_panel(str(e), title="Knowledge Store Corrupted")
        sys.exit(1)

    print_header("Knowledge Store")
    print_key_value_table({
        "Total learnings": stats["totalLearnings"],
        "Average confidence": f"{stats['averageConfidence']:.2f}",
        "Average success rate": f"{stats['averageSuccessRate']:.2f}",
        "Last updated": stats["lastUpdated"],
    })

    table = create_table(columns=["Type", "Count"])
    for learning_type, count in stats["byType"].items():
        table.add_row(learning_type, f"[lw.number]{count}[/]")
    print_table(table)


def cmd_memory_query(args):
    config = get_config(args)
    try:
        learnings = load_memory(config).query(
            type=args.type,
            task_type=args.task_type,
            min_confidence=args.min_confidence,
            limit=args.limit,
        )
    except CorruptionError as e:
        print_error_panel(str(e), title="Knowledge Store Corrupted")
        sys.exit(1)

    if not learnings:
        print_muted("No matching learnings.")
        return

    table = create_table(columns=["ID", "Type", "Task", "Confidence", "Success", "Uses", "Description"])
    for learning in learnings:
        description = learning.content.get("description") or learning.content.get("pattern") or ""
        table.add_row(
            learning.id,
            learning.type,
            learning.task_type,
            f"{learning.confidence:.2f}",
            f"{learning.success_rate:.2f}",
            f"[lw.number]{learning.use_count}[/]",
            str(description)[:60],
        )
    print_table(table)


def cmd_memory_verify(args):
    config = get_config(args)
    result = load_memory(config).verify()
    if result["valid"]:
        print_success("Knowledge store checksum verified")
    else:
        print_error(f"Knowledge store invalid: {result['error']}")
        sys.exit(1)


def cmd_staging_stats(args):
    config = get_config(args)
    stats = MemoryPromotion(config.knowledge_dir).get_staging_stats()
    print_header("Staging Area")
    print_key_value_table({
        "Total": stats["total"],
        "Pending": stats["pending"],
        "Validated": stats["validated"],
        "Rejected": stats["rejected"],
    })


# =============================================================================
# Providers
# =============================================================================

def cmd_providers(args):
    """List registered providers and whether their CLI is installed."""
    config = get_config(args)
    table = create_table(columns=["Provider", "Binary", "Available", "Version", "Capabilities"])

    with spinner("Checking provider binaries..."):
        rows = []
        for name in list_providers():
            provider = create_provider(name)
            caps = [k for k, v in provider.get_capabilities().to_dict().items() if v]
            rows.append((
                f"[lw.accent]{name}[/]" if name == config.provider else name,
                provider.get_binary(),
                "[lw.ok]yes[/]" if provider.is_available() else "[lw.err]no[/]",
                provider.get_version() or "[lw.muted]-[/]",
                ", ".join(caps) or "[lw.muted]none[/]",
            ))

    for row in rows:
        table.add_row(*row)
    print_table(table)
    print_info(f"Default provider: {config.provider}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loopwarden",
        description="Loop overseer and knowledge store tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show the report for a loop
    loopwarden report loop-42

    # Resume a paused loop
    loopwarden resume loop-42 "Fixed the flaky fixture by hand"

    # Top strategies in the knowledge store
    loopwarden memory query --type strategy --limit 5
        """
    )
    parser.add_argument("--config", "-c", help="Path to loopwarden_config.json")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (("report", "Show a loop's overseer report"), ("health", "Show loop health")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("loop_id", help="Loop ID")
        sub.add_argument("--storage", "-s", help="Audit log directory")
        if name == "report":
            sub.add_argument("--output", "-o", help="Write the report to this file")

    resume_parser = subparsers.add_parser("resume", help="Resume a paused loop")
    resume_parser.add_argument("loop_id", help="Loop ID")
    resume_parser.add_argument("reason", help="Why the loop may continue")
    resume_parser.add_argument("--storage", "-s", help="Audit log directory")

    memory_parser = subparsers.add_parser("memory", help="Inspect the knowledge store")
    memory_parser.add_argument("--knowledge-dir", "-k", help="Knowledge directory")
    memory_sub = memory_parser.add_subparsers(dest="memory_command")
    memory_sub.add_parser("stats", help="Store statistics")
    query_parser = memory_sub.add_parser("query", help="Query learnings")
    query_parser.add_argument("--type", "-t", help="Learning type")
    query_parser.add_argument("--task-type", help="Task type")
    query_parser.add_argument("--min-confidence", type=float, help="Minimum confidence")
    query_parser.add_argument("--limit", "-n", type=int, default=10, help="Maximum results")
    memory_sub.add_parser("verify", help="Verify the store checksum")

    staging_parser = subparsers.add_parser("staging", help="Inspect the staging area")
    staging_parser.add_argument("--knowledge-dir", "-k", help="Knowledge directory")
    staging_sub = staging_parser.add_subparsers(dest="staging_command")
    staging_sub.add_parser("stats", help="Staging counts")

    subparsers.add_parser("providers", help="List provider adapters")

    return parser


def main(argv: Optional[list[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_rich_logging(logging.DEBUG if args.verbose else logging.WARNING)

    commands = {
        "report": cmd_report,
        "health": cmd_health,
        "resume": cmd_resume,
        "providers": cmd_providers,
        ("memory", "stats"): cmd_memory_stats,
        ("memory", "query"): cmd_memory_query,
        ("memory", "verify"): cmd_memory_verify,
        ("staging", "stats"): cmd_staging_stats,
    }

    if args.command == "memory":
        key = ("memory", args.memory_command)
    elif args.command == "staging":
        key = ("staging", args.staging_command)
    else:
        key = args.command

    if key not in commands:
        parser.print_help()
        sys.exit(1)

    commands[key](args)


if __name__ == "__main__":
    main()
