#!/usr/bin/env python3
"""Unified CLI for triagectl -- CI failure root-cause classifier."""

import argparse
import logging
import sys

from triagectl import __version__


def _load_config(args):
    """Config file, then environment, then command-line flags."""
    from triagectl.config import load_config

    config = load_config(args.config)
    if getattr(args, "repo", None):
        config.repository = args.repo
    if getattr(args, "db", None):
        config.database_url = args.db
    if getattr(args, "llm", None) is not None:
        config.llm.enabled = args.llm
    if getattr(args, "provider", None):
        config.llm.provider = args.provider
    if getattr(args, "model", None):
        config.llm.model = args.model
    return config


def _run_filters(args, config) -> tuple[list[str] | None, list[str] | None]:
    """Workflow and branch filters: flags win, then enabled config workflows."""
    from triagectl.fetch import filters_from_config, parse_filter

    workflows, branches = filters_from_config(config)
    if args.workflow is not None:
        workflows = parse_filter(args.workflow)
    if args.branch is not None:
        branches = parse_filter(args.branch)
    return workflows, branches


def cmd_analyze(args):
    from triagectl.pipeline import run_analyze
    config = _load_config(args)
    workflows, branches = _run_filters(args, config)
    return run_analyze(config, args.lookback_days, workflows, branches)


def cmd_reprocess(args):
    from triagectl.pipeline import run_reprocess
    return run_reprocess(_load_config(args))


def cmd_stats(args):
    from triagectl.pipeline import open_store
    from triagectl.stats import run

    config = _load_config(args)
    store = open_store(config)
    try:
        return run(store, config.repository or None, args.output_json)
    finally:
        store.dispose()


def cmd_embed(args):
    from triagectl.pipeline import run_embed
    return run_embed(_load_config(args))


def cmd_similar(args):
    from triagectl.pipeline import run_similar
    return run_similar(_load_config(args), args.text, args.threshold, args.limit)


def _add_common(parser: argparse.ArgumentParser, repo: bool = True) -> None:
    parser.add_argument(
        "--config", default=None,
        help="Path to the JSON config file (default: config.json if present)",
    )
    parser.add_argument(
        "--db", default=None,
        help="Database URL (default: from config or sqlite:///triagectl.db)",
    )
    if repo:
        parser.add_argument(
            "--repo", default=None,
            help="Target repository (owner/name); overrides the config file",
        )


def _add_llm(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--llm", action=argparse.BooleanOptionalAction, default=None,
        help="Enable or disable LLM analysis (default: from config)",
    )
    parser.add_argument(
        "--provider", default=None,
        help="LLM provider: mock, claude or openai (default: from config)",
    )
    parser.add_argument(
        "--model", default=None,
        help="LLM model name (default: provider default)",
    )


def main():
    parser = argparse.ArgumentParser(
        prog="triagectl",
        description="CI failure classifier -- finds the root cause of failed GitHub Actions jobs",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--debug", action="store_true",
        help="Enable debug logging (verbose output)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- analyze ---
    p_analyze = subparsers.add_parser(
        "analyze", help="Fetch failed runs and classify their failed jobs",
    )
    _add_common(p_analyze)
    _add_llm(p_analyze)
    p_analyze.add_argument(
        "--lookback-days", type=int, default=7,
        help="Look-back period in days (default: 7)",
    )
    p_analyze.add_argument(
        "--workflow", default=None,
        help="Workflow file: name.yaml, comma-separated list, or * for all"
        " (default: enabled workflows from config, else all)",
    )
    p_analyze.add_argument(
        "--branch", default=None,
        help="Branch filter: name, comma-separated list, or * for all"
        " (default: branches from config, else all)",
    )
    p_analyze.set_defaults(func=cmd_analyze)

    # --- reprocess ---
    p_reprocess = subparsers.add_parser(
        "reprocess",
        help="Classify again stored jobs that still lack logs and a confident root cause",
    )
    _add_common(p_reprocess)
    _add_llm(p_reprocess)
    p_reprocess.set_defaults(func=cmd_reprocess)

    # --- stats ---
    p_stats = subparsers.add_parser(
        "stats", help="Print detection statistics and efficiency metrics",
    )
    _add_common(p_stats)
    p_stats.add_argument(
        "--output-json", default=None,
        help="Also write the statistics to this JSON file",
    )
    p_stats.set_defaults(func=cmd_stats)

    # --- embed ---
    p_embed = subparsers.add_parser(
        "embed", help="Generate embeddings for root causes that have none",
    )
    _add_common(p_embed, repo=False)
    p_embed.set_defaults(func=cmd_embed)

    # --- similar ---
    p_similar = subparsers.add_parser(
        "similar", help="List catalog root causes similar to a failure description",
    )
    _add_common(p_similar, repo=False)
    p_similar.add_argument("text", help="Failure description or error message")
    p_similar.add_argument(
        "--threshold", type=float, default=0.7,
        help="Minimum cosine similarity (default: 0.7)",
    )
    p_similar.add_argument(
        "--limit", type=int, default=5,
        help="Maximum number of matches (default: 5)",
    )
    p_similar.set_defaults(func=cmd_similar)

    args = parser.parse_args()

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format=(
            "%(message)s" if level == logging.INFO
            else "%(asctime)s %(name)s %(levelname)s %(message)s"
        ),
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    from triagectl.config import ConfigError
    try:
        rc = args.func(args)
    except ConfigError as e:
        logging.getLogger(__name__).error("Invalid configuration: %s", e)
        rc = 2
    sys.exit(rc)


if __name__ == "__main__":
    main()
