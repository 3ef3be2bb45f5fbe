#!/usr/bin/env python
"""Run ODE simulations from YAML specification files.

Usage:
    python run_simulations.py <experiment_name>

Example:
    python run_simulations.py dosing

This will:
1. Look for simulations/<experiment_name>/sim_specs/*.yaml
2. Run each simulation defined in the YAML files
3. Save results to simulations/<experiment_name>/results/
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

import yaml

from odevents import ModelProvider, OdeventsError, load_run_spec


def save_results(spec, trajectory, output_dir: Path, sim_name: str):
    """Save the trajectory as CSV and the run metadata as YAML."""
    output_dir.mkdir(parents=True, exist_ok=True)

    trajectory.save(output_dir / f"{sim_name}_trajectory.csv")

    metadata = {
        "simulation_name": sim_name,
        "timestamp": datetime.now().isoformat(),
        "model": spec.model,
        "parameters": spec.parameters,
        "n_events": len(spec.events),
        "n_t": trajectory.n_points,
        "t_final": trajectory.t_end,
        "scheme": spec.config.scheme,
        "stats": trajectory.stats.as_dict(),
    }
    with open(output_dir / f"{sim_name}_metadata.yaml", "w") as f:
        yaml.dump(metadata, f, default_flow_style=False)

    print(f"Results saved to {output_dir}")


def main():
    parser = argparse.ArgumentParser(
        description="Run ODE simulations from YAML specs",
        epilog="""
Examples:
  python run_simulations.py dosing                    # Run all simulations in dosing/
  python run_simulations.py dosing --sim pk_01        # Run only pk_01
  python run_simulations.py dosing --sim "pk_0*"      # Run matching pattern
  python run_simulations.py dosing --list             # List available simulations
""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "experiment_name",
        help="Name of experiment (directory in simulations/)",
    )
    parser.add_argument(
        "--sim",
        "--spec",
        nargs="*",
        dest="simulations",
        metavar="NAME",
        help="Run specific simulation(s) by name (without .yaml). "
        "Supports glob patterns (e.g., 'pk_*'). "
        "If not specified, runs all simulations.",
    )
    parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List available simulations and exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse specs but don't run simulations",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Log run summaries (-v) or solver details (-vv)",
    )

    args = parser.parse_args()

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    base_dir = Path(__file__).parent / "simulations" / args.experiment_name
    spec_dir = base_dir / "sim_specs"
    results_dir = base_dir / "results"

    if not spec_dir.exists():
        print(f"Error: Spec directory not found: {spec_dir}")
        sys.exit(1)

    all_yaml_files = sorted(spec_dir.glob("*.yaml"))

    if not all_yaml_files:
        print(f"Error: No YAML files found in {spec_dir}")
        sys.exit(1)

    if args.list:
        print(f"Available simulations in '{args.experiment_name}':")
        for yaml_file in all_yaml_files:
            print(f"  {yaml_file.stem}")
        sys.exit(0)

    if args.simulations:
        yaml_files = []
        for pattern in args.simulations:
            if "*" in pattern or "?" in pattern or "[" in pattern:
                matched = list(spec_dir.glob(f"{pattern}.yaml"))
                if not matched:
                    print(f"Warning: No files match pattern '{pattern}'")
                yaml_files.extend(matched)
            else:
                yaml_path = spec_dir / f"{pattern}.yaml"
                if yaml_path.exists():
                    yaml_files.append(yaml_path)
                else:
                    print(f"Error: Spec file not found: {yaml_path}")
                    sys.exit(1)
        yaml_files = sorted(set(yaml_files))
    else:
        yaml_files = all_yaml_files

    if not yaml_files:
        print(f"Error: No YAML files found in {spec_dir}")
        sys.exit(1)

    print(f"Found {len(yaml_files)} simulation spec(s)")
    print(f"Results will be saved to: {results_dir}")
    print()

    # Compiled models are shared across all simulations
    provider = ModelProvider()

    for yaml_file in yaml_files:
        sim_name = yaml_file.stem
        print(f"{'=' * 60}")
        print(f"Processing: {sim_name}")
        print(f"{'=' * 60}")

        spec = load_run_spec(yaml_file)

        if args.dry_run:
            print("Spec loaded successfully (dry run)")
            print(f"  Model: {spec.model}")
            print(f"  Output times: {len(spec.output_times)}")
            print(f"  Events: {len(spec.events)}")
            continue

        try:
            trajectory = spec.run(provider)
            save_results(spec, trajectory, results_dir, sim_name)
        except OdeventsError as e:
            print(f"Error running simulation {sim_name}: {e}")
            raise

        print()

    print("All simulations completed!")


if __name__ == "__main__":
    main()
