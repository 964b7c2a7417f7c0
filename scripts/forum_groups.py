"""CLI helpers to inspect forum group name mappings."""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from typing import Optional, Sequence

from core.logging import setup_logging
from core.settings import load_group_settings
from services.group_name_cache import GroupNameCache
from services.group_names import GroupNameCanonicalizer


def _canonicalize(args: argparse.Namespace, cache: GroupNameCache) -> int:
    settings = args.settings
    if args.strategy:
        settings = replace(settings, strategy=args.strategy)
    try:
        canonicalizer = GroupNameCanonicalizer(settings, cache)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    for name in args.names:
        print(f"{name}\t{canonicalizer.canonicalize(name)}")
    return 0


def _lookup(args: argparse.Namespace, cache: GroupNameCache) -> int:
    missing = 0
    for canonical in args.names:
        original = cache.lookup(canonical)
        if original is None:
            missing += 1
        print(f"{canonical}\t{original or '-'}")
    return 1 if missing else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect canonical forum group names.")
    parser.add_argument("--cache-file", help="Override the group name cache file.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    canonicalize = subparsers.add_parser("canonicalize", help="Print canonical names and record them in the cache.")
    canonicalize.add_argument("names", nargs="+", help="Identity provider group names.")
    canonicalize.add_argument("--strategy", choices=["short", "long"], help="Override the configured strategy.")
    canonicalize.set_defaults(handler=_canonicalize)

    lookup = subparsers.add_parser("lookup", help="Print the original name recorded for canonical names.")
    lookup.add_argument("names", nargs="+", help="Canonical forum group names.")
    lookup.set_defaults(handler=_lookup)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    args.settings = load_group_settings()
    cache_file = args.cache_file or args.settings.cache_file
    with GroupNameCache(cache_file) as cache:
        return args.handler(args, cache)


if __name__ == "__main__":
    raise SystemExit(main())
