"""Command line entry point: run a seeded simulation and export the results."""

import argparse
import logging
import sys

from .config.loader import load_config, parse_override
from .reporting.export import export_csv, export_json
from .simulation.runner import SimulationRunner
from .validation.sanity_checks import validate_simulation_results


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vepower",
        description="Simulate a time-decaying voting escrow and check its invariants",
    )
    parser.add_argument("--config", help="YAML config (defaults to bundled defaults.yaml)")
    parser.add_argument("--epochs", type=int, help="Override simulation.num_epochs")
    parser.add_argument("--seed", type=int, help="Override simulation.random_seed")
    parser.add_argument(
        "--set", dest="overrides", action="append", default=[], metavar="KEY=VALUE",
        help="Override any setting, e.g. --set escrow.max_sync_epochs=8 (repeatable)",
    )
    parser.add_argument("--csv", help="Write per-epoch metrics to this CSV file")
    parser.add_argument("--json", help="Write the full result to this JSON file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {}
    try:
        for text in args.overrides:
            key, value = parse_override(text)
            overrides[key] = value
    except ValueError as e:
        parser.error(str(e))
    if args.epochs is not None:
        overrides['simulation.num_epochs'] = args.epochs
    if args.seed is not None:
        overrides['simulation.random_seed'] = args.seed

    try:
        config = load_config(args.config, overrides)
    except KeyError as e:
        parser.error(str(e))

    result = SimulationRunner(config).run()

    if args.csv:
        export_csv(result, args.csv)
    if args.json:
        export_json(result, args.json)

    final = result.final_metrics
    print(f"Config hash:        {config.compute_hash()}")
    print(f"Locks created:      {final['num_locks']} ({final['num_unlocked']} unlocked)")
    print(f"Final total supply: {final['final_total_supply']:,}")
    print(f"Peak total supply:  {final['peak_total_supply']:,}")
    print(f"Rejected actions:   {sum(result.rejections.values())}")

    warnings = validate_simulation_results(config, result.escrow, result.metrics_over_time)
    for warning in warnings:
        print(f"[{warning.severity}] {warning.message}" + (f": {warning.details}" if warning.details else ""))

    errors = result.invariant_errors + [w.message for w in warnings if w.severity == "error"]
    return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())
