"""Script to generate a synthetic hub-and-spoke network as reference tables."""

import argparse
from pathlib import Path

from kitflow.generators import NetworkGenerator, write_reference_csv


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a synthetic kitflow network")
    parser.add_argument("--spokes", type=int, default=12, help="Number of spoke locations")
    parser.add_argument(
        "--rotations", type=int, default=2, help="Hub-spoke rotations per spoke"
    )
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--output-dir", default="data/reference", help="Output directory")
    args = parser.parse_args()

    output_dir = Path(args.output_dir)
    print(f"Generating network to {output_dir}...")

    world = NetworkGenerator(seed=args.seed).generate(
        n_spokes=args.spokes, rotations_per_spoke=args.rotations
    )
    write_reference_csv(world, output_dir)

    print("Done!")
    print("Stats:")
    print(f"  Locations:     {len(world.locations)} (hub {world.hub_id})")
    print(f"  Vehicle types: {len(world.vehicle_types)}")
    print(f"  Templates:     {len(world.templates)}")


if __name__ == "__main__":
    main()
