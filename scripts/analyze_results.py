#!/usr/bin/env python
"""Analyze kit allocation run output and generate summary report."""

import argparse
import json
import sys
from io import StringIO
from pathlib import Path

import pandas as pd

TIER_COLUMNS = ["first", "business", "premium_economy", "economy"]


def analyze_results(results_dir: str) -> dict:
    """Analyze run output and return summary statistics."""
    results_path = Path(results_dir)

    if not results_path.exists():
        raise FileNotFoundError(f"Results directory not found: {results_dir}")

    stats = {}

    metrics_file = results_path / "metrics.json"
    if metrics_file.exists():
        with open(metrics_file) as f:
            stats["metrics"] = json.load(f)

    report_file = results_path / "cost_report.txt"
    if report_file.exists():
        stats["cost_report"] = report_file.read_text()

    # Loads
    loads_file = results_path / "loads.csv"
    if loads_file.exists():
        loads = pd.read_csv(loads_file)
        loads["total"] = loads[TIER_COLUMNS].sum(axis=1)
        stats["loads"] = {
            "departures": len(loads),
            "total_kits": int(loads["total"].sum()),
            "surplus_kits": int(loads["extra_total"].sum()),
            "empty_loads": int((loads["total"] == 0).sum()),
            "skipped": loads["skipped_reason"].dropna().value_counts().to_dict(),
            "by_tier": {t: int(loads[t].sum()) for t in TIER_COLUMNS},
            "by_origin": loads.groupby("origin_id")["total"].sum().astype(int).to_dict(),
            "daily_kits": loads.groupby("day")["total"].sum().describe().to_dict(),
        }

    # Acquisitions
    acq_file = results_path / "acquisitions.csv"
    if acq_file.exists():
        acq = pd.read_csv(acq_file)
        stats["acquisitions"] = {
            "orders": len(acq),
            "by_tier": {t: int(acq[t].sum()) for t in TIER_COLUMNS},
            "order_days": int(acq["day"].nunique()),
        }

    # Penalties
    penalties_file = results_path / "penalties.csv"
    if penalties_file.exists():
        penalties = pd.read_csv(penalties_file)
        stats["penalties"] = {
            "count": len(penalties),
            "total": float(penalties["amount"].sum()),
            "by_code": penalties.groupby("code")["amount"].sum().to_dict(),
            "by_kind": penalties.groupby("kind")["amount"].sum().to_dict(),
            "top_locations": (
                penalties.groupby("location_id")["amount"]
                .sum()
                .sort_values(ascending=False)
                .head(5)
                .to_dict()
            ),
            "daily_amount": penalties.groupby("day")["amount"].sum().to_dict(),
        }

    # Inventory (sampled by the writer)
    inventory_file = results_path / "inventory.csv"
    if inventory_file.exists():
        inventory = pd.read_csv(inventory_file)
        inventory["total"] = inventory[TIER_COLUMNS].sum(axis=1)
        totals = inventory.groupby("day")["total"].sum()
        if not totals.empty:
            first_inv = float(totals.iloc[0])
            last_inv = float(totals.iloc[-1])
            stats["inventory"] = {
                "snapshot_days": len(totals),
                "first_day": int(totals.index[0]),
                "last_day": int(totals.index[-1]),
                "starting_inventory": first_inv,
                "ending_inventory": last_inv,
                "depletion_pct": (first_inv - last_inv) / first_inv * 100 if first_inv else 0.0,
                "trend": {int(d): float(v) for d, v in totals.items()},
            }

    return stats


def print_report(stats: dict) -> None:
    """Print formatted analysis report."""
    print("=" * 60)
    print("         KIT ALLOCATION RUN ANALYSIS REPORT")
    print("=" * 60)

    if "cost_report" in stats:
        print("\n" + stats["cost_report"])

    if "metrics" in stats:
        m = stats["metrics"]
        print("\n--- RUN ---")
        print(f"  Session:               {m.get('session_id')}")
        print(f"  Rounds played:         {m.get('rounds_played')}")
        print(f"  Total cost:            {m.get('total_cost', 0.0):,.2f}")
        print(f"  Audit violations:      {m.get('audit_violations', 0)}")

    if "loads" in stats:
        lo = stats["loads"]
        print("\n--- LOADS ---")
        print(f"  Departures loaded:     {lo['departures']:,}")
        print(f"  Total kits:            {lo['total_kits']:,}")
        print(f"  Surplus kits routed:   {lo['surplus_kits']:,}")
        print(f"  Empty loads:           {lo['empty_loads']:,}")
        if lo["skipped"]:
            print(f"  Skipped:               {lo['skipped']}")
        print("  By origin:")
        for origin, qty in sorted(lo["by_origin"].items(), key=lambda x: -x[1])[:10]:
            pct = qty / lo["total_kits"] * 100 if lo["total_kits"] else 0.0
            print(f"    {origin}: {qty:,} ({pct:.1f}%)")

    if "acquisitions" in stats:
        a = stats["acquisitions"]
        print("\n--- ACQUISITIONS ---")
        print(f"  Orders placed:         {a['orders']}")
        print(f"  Days with orders:      {a['order_days']}")
        print(f"  By tier:               {a['by_tier']}")

    if "penalties" in stats:
        p = stats["penalties"]
        print("\n--- PENALTIES ---")
        print(f"  Count:                 {p['count']:,}")
        print(f"  Total:                 {p['total']:,.2f}")
        for code, amount in sorted(p["by_code"].items(), key=lambda x: -x[1]):
            print(f"    {code}: {amount:,.2f}")
        print("  Top locations:")
        for loc, amount in p["top_locations"].items():
            print(f"    {loc}: {amount:,.2f}")

    if "inventory" in stats:
        i = stats["inventory"]
        print("\n--- INVENTORY ---")
        print(f"  Snapshots recorded:    {i['snapshot_days']} days")
        print(f"  Starting inventory:    {i['starting_inventory']:,.0f} kits")
        print(f"  Ending inventory:      {i['ending_inventory']:,.0f} kits")
        print(f"  Depletion:             {i['depletion_pct']:.1f}%")

    print("\n" + "=" * 60)


def main():
    parser = argparse.ArgumentParser(description="Analyze kit allocation run output")
    parser.add_argument(
        "results_dir",
        nargs="?",
        default="data/output",
        help="Path to results directory (default: data/output)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON instead of formatted report",
    )
    parser.add_argument(
        "--output",
        "-o",
        help="Save report to file",
    )

    args = parser.parse_args()
    stats = analyze_results(args.results_dir)

    if args.json:
        output = json.dumps(stats, indent=2, default=str)
        if args.output:
            Path(args.output).write_text(output)
            print(f"JSON report saved to {args.output}")
        else:
            print(output)
    elif args.output:
        old_stdout = sys.stdout
        sys.stdout = StringIO()
        print_report(stats)
        output = sys.stdout.getvalue()
        sys.stdout = old_stdout
        Path(args.output).write_text(output)
        print(f"Report saved to {args.output}")
    else:
        print_report(stats)


if __name__ == "__main__":
    main()
