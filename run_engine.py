"""
Kit Allocation Engine Runner.

Usage:
    python run_engine.py --sandbox                         # Offline run on a synthetic network
    python run_engine.py --sandbox --data-dir data/ref     # Offline run on CSV reference data
    python run_engine.py --base-url http://host:8080 --api-key KEY --data-dir data/ref
    python run_engine.py --sandbox --no-logging            # Fast mode (no export)
"""

import argparse
import logging
import os
import time

from kitflow.config.loader import engine_section, load_engine_config
from kitflow.generators import NetworkGenerator
from kitflow.simulation.builder import WorldBuilder
from kitflow.simulation.clock import RunHorizon
from kitflow.simulation.orchestrator import Orchestrator
from kitflow.simulation.sandbox import SandboxEvaluator
from kitflow.simulation.writer import SimulationWriter
from kitflow.transport import HttpTransport
from kitflow.utils.logger import setup_logger


def main() -> None:
    """Run the kit allocation engine against the platform or the local sandbox."""
    parser = argparse.ArgumentParser(
        description="Kit Allocation Engine Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_engine.py --sandbox --days 5 --no-logging   # Fast test
  python run_engine.py --sandbox --format parquet        # Columnar export
        """,
    )

    # Evaluation target
    parser.add_argument(
        "--sandbox",
        action="store_true",
        help="Evaluate locally with the offline sandbox instead of the platform",
    )
    parser.add_argument("--base-url", type=str, default=None, help="Platform base URL")
    parser.add_argument(
        "--api-key",
        type=str,
        default=None,
        help="Platform API key (default: read from the configured environment variable)",
    )

    # Reference data
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Directory with the ';'-delimited reference CSVs (default: synthetic network)",
    )
    parser.add_argument(
        "--spokes",
        type=int,
        default=12,
        help="Number of spokes in the synthetic network (default: 12)",
    )
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--config", type=str, default=None, help="Engine config JSON path")
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Run length in days (default: from config, 30)",
    )

    # Export
    parser.add_argument(
        "--output-dir",
        type=str,
        default="data/output",
        help="Directory for output artifacts",
    )
    parser.add_argument(
        "--no-logging",
        action="store_true",
        help="Disable CSV/JSON export (faster)",
    )
    parser.add_argument(
        "--format",
        type=str,
        choices=["csv", "parquet"],
        default="csv",
        help="Output format: csv (default) or parquet (requires pyarrow)",
    )
    parser.add_argument("--verbose", action="store_true", help="Show debug logs on console")

    args = parser.parse_args()
    if not args.sandbox and not args.data_dir:
        parser.error("a platform run needs --data-dir with the platform's reference data")

    enable_logging = not args.no_logging
    setup_logger(
        "kitflow",
        log_dir=os.path.join(args.output_dir, "logs") if enable_logging else None,
        console_level=logging.DEBUG if args.verbose else logging.INFO,
    )

    config = load_engine_config(args.config)
    clock_params = engine_section(config, "clock")
    horizon = RunHorizon(args.days or int(clock_params.get("total_days", 30)))

    mode_parts = [
        f"Days={horizon.total_days}",
        f"Target={'Sandbox' if args.sandbox else 'Platform'}",
        f"Logging={'Enabled' if enable_logging else 'Disabled'}",
    ]
    if enable_logging:
        mode_parts.append(f"Format={args.format}")
    print(f"Initializing Kit Allocation Engine ({', '.join(mode_parts)})...")

    if args.data_dir:
        world = WorldBuilder(args.data_dir).build()
    else:
        world = NetworkGenerator(seed=args.seed, config=config).generate(n_spokes=args.spokes)

    if args.sandbox:
        transport = SandboxEvaluator(world, config, horizon=horizon, seed=args.seed)
    else:
        transport = HttpTransport(base_url=args.base_url, api_key=args.api_key, config=config)

    writer_params = engine_section(config, "writer")
    writer = SimulationWriter(
        output_dir=args.output_dir,
        enable_logging=enable_logging,
        output_format=args.format,
        inventory_sample_rounds=int(writer_params.get("inventory_sample_rounds", 24)),
    )

    engine = Orchestrator(world, transport, config, writer=writer, horizon=horizon)

    print("Starting Engine Run...")
    start_time = time.time()
    with writer.streaming_context():
        engine.run()
        duration = time.time() - start_time
        print(f"\nRun completed in {duration:.2f} seconds.")

        # Generate Reports
        print("\nGenerating Artifacts...")
        engine.save_results()

    report = engine.generate_cost_report()
    print("\n" + report + "\n")

    if enable_logging:
        report_path = os.path.join(str(writer.output_dir), "cost_report.txt")
        with open(report_path, "w") as f:
            f.write(report)
        print(f"Cost Report saved to {report_path}")


if __name__ == "__main__":
    main()
