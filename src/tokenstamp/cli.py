"""Command-line diagnostics for tuning placement behaviour.

``tokenstamp config`` prints the effective configuration, ``rank`` shows how
an asset filename would be matched against entity names, ``hp`` resolves an
HP override and ``roll`` evaluates a dice formula.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import random
from typing import List, Optional

import yaml

from . import __version__
from .collaborators import EntityRecord
from .config import load_placement_config
from .dice import roll
from .entries import normalize
from .errors import ConfigError, FormulaError
from .hp import HP_MODES, HPBase, HPParams, HPResolver
from .logging_config import configure_logging, verbosity_to_level
from .matching import EntityMatcher, derive_match_key, world_candidate

logger = logging.getLogger(__name__)


def _cmd_config(args: argparse.Namespace) -> int:
    cfg = load_placement_config(args.path, include_user=not args.no_user)
    print(yaml.safe_dump(cfg.model_dump(), sort_keys=False), end="")
    return 0


def _cmd_rank(args: argparse.Namespace) -> int:
    cfg = load_placement_config(args.config, include_user=not args.no_user)
    matching = cfg.matching
    matcher = EntityMatcher(
        matching.weights,
        min_containment_length=matching.min_containment_length,
        auto_select_min_score=matching.auto_select_min_score,
    )
    key = derive_match_key(normalize({"filename": args.filename, "display_name": args.display_name}))
    candidates = [world_candidate(EntityRecord(id=str(i), name=name)) for i, name in enumerate(args.names)]
    ranked = matcher.rank(candidates, key.tokens, key.normalized, limit=args.limit, allow_zero=args.all)
    print(f"query: '{key.normalized}' tokens={list(key.tokens)}")
    for item in ranked:
        print(f"{item.score:7.2f}  {item.candidate.label}")
    top = matcher.auto_select(ranked, user_modified=False)
    print(f"auto-select: {top.label if top else '(create new)'}")
    return 0


def _cmd_hp(args: argparse.Namespace) -> int:
    resolver = HPResolver(rng=random.Random(args.seed), warn=lambda msg: print(f"warning: {msg}"))
    base = HPBase(path="hp", value=args.base, max=args.base, formula=args.formula or "")
    params = HPParams(percent=args.percent, static_value=args.static or "", formula=args.formula or "")
    override = asyncio.run(resolver.resolve(args.mode, params, base))
    if override is None:
        print("inherit")
    else:
        print(override.value)
    return 0


def _cmd_roll(args: argparse.Namespace) -> int:
    try:
        result = roll(args.formula, random.Random(args.seed))
    except FormulaError as e:
        print(f"ERROR: {e}")
        return 1
    print(f"{result.total}  rolls={[list(r) for r in result.rolls]}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tokenstamp", description="Token Stamp placement diagnostics")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity (-v, -vv)")
    sub = p.add_subparsers(dest="cmd", required=True)

    c = sub.add_parser("config", help="Print the effective placement configuration")
    c.add_argument("--path", default=None, help="Explicit override YAML file")
    c.add_argument("--no-user", action="store_true", help="Ignore the user config directory")
    c.set_defaults(func=_cmd_config)

    r = sub.add_parser("rank", help="Rank entity names against an asset filename")
    r.add_argument("filename", help="Asset filename, e.g. goblin_archer.webp")
    r.add_argument("names", nargs="+", help="Entity names to rank")
    r.add_argument("--display-name", default="", help="Display name of the asset")
    r.add_argument("--limit", type=int, default=10)
    r.add_argument("--all", action="store_true", help="Include zero-score candidates")
    r.add_argument("--config", default=None, help="Explicit override YAML file")
    r.add_argument("--no-user", action="store_true", help="Ignore the user config directory")
    r.set_defaults(func=_cmd_rank)

    h = sub.add_parser("hp", help="Resolve an HP override")
    h.add_argument("mode", choices=HP_MODES)
    h.add_argument("--base", type=int, default=10, help="Preset HP of the entity")
    h.add_argument("--percent", type=int, default=20)
    h.add_argument("--static", default=None, help="Fixed value or range, e.g. 20-85")
    h.add_argument("--formula", default=None, help="Dice formula, e.g. 2d8+4")
    h.add_argument("--seed", type=int, default=None)
    h.set_defaults(func=_cmd_hp)

    d = sub.add_parser("roll", help="Evaluate a dice formula")
    d.add_argument("formula")
    d.add_argument("--seed", type=int, default=None)
    d.set_defaults(func=_cmd_roll)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbosity_to_level(args.verbose))
    try:
        return args.func(args)
    except ConfigError as e:
        logger.error("%s", e)
        print(f"ERROR: {e}")
        return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
