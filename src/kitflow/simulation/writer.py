"""
Run data export with streaming support.

Per-round loads, acquisitions, penalties and sampled inventory are written
incrementally to CSV or Parquet, so partial logs survive an aborted run.
"""

import csv
import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from kitflow.agents.loading import LoadDecision
from kitflow.kits.core import TIERS, ResourceQuantity
from kitflow.simulation.ledger import InventoryLedger
from kitflow.simulation.risk import PenaltyRecord

# Parquet support is optional - only import if available
try:
    import pyarrow as pa
    import pyarrow.parquet as pq

    PARQUET_AVAILABLE = True
except ImportError:
    PARQUET_AVAILABLE = False


class TableStream:
    """One output table. Nothing touches disk until the first row arrives."""

    def __init__(self, filepath: Path) -> None:
        self.filepath = filepath
        self.rows_written = 0

    def write_rows(self, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        self._append(rows)
        self.rows_written += len(rows)

    def _append(self, rows: list[dict[str, Any]]) -> None:
        raise NotImplementedError

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass


class CSVTableStream(TableStream):
    """Header on first write, then rows appended through one open handle."""

    def __init__(self, filepath: Path, fieldnames: list[str]) -> None:
        super().__init__(filepath)
        self.fieldnames = fieldnames
        self._file: Any = None
        self._writer: csv.DictWriter[str] | None = None

    def _append(self, rows: list[dict[str, Any]]) -> None:
        if self._writer is None:
            self._file = open(self.filepath, "w", newline="")
            self._writer = csv.DictWriter(self._file, fieldnames=self.fieldnames)
            self._writer.writeheader()
        self._writer.writerows(rows)

    def flush(self) -> None:
        if self._file is not None:
            self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
        self._file = None
        self._writer = None


class ParquetTableStream(TableStream):
    """Buffers rows and emits a row group per batch_size rows."""

    def __init__(self, filepath: Path, schema: "pa.Schema", batch_size: int) -> None:
        super().__init__(filepath)
        self.schema = schema
        self.batch_size = batch_size
        self._pending: list[dict[str, Any]] = []
        self._writer: Any = None

    def _append(self, rows: list[dict[str, Any]]) -> None:
        self._pending.extend(rows)
        if len(self._pending) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        if not self._pending:
            return
        if self._writer is None:
            self._writer = pq.ParquetWriter(self.filepath, self.schema)
        self._writer.write_table(pa.Table.from_pylist(self._pending, schema=self.schema))
        self._pending = []

    def close(self) -> None:
        self.flush()
        if self._writer is not None:
            self._writer.close()
        self._writer = None


TIER_FIELDS = [t.value for t in TIERS]

TABLE_FIELDS = {
    "loads": ["day", "hour", "departure_id", "origin_id", "destination_id"]
    + TIER_FIELDS
    + ["extra_total", "headroom_bound", "skipped_reason"],
    "acquisitions": ["day", "hour"] + TIER_FIELDS,
    "penalties": [
        "day",
        "hour",
        "issued_day",
        "issued_hour",
        "code",
        "kind",
        "amount",
        "departure_id",
        "location_id",
        "tier",
        "quantity",
        "reason",
    ],
    "inventory": ["day", "hour", "location_id"] + TIER_FIELDS,
}

_ARROW_TYPES = {
    "day": "int32",
    "hour": "int32",
    "issued_day": "int32",
    "issued_hour": "int32",
    "amount": "float64",
    "extra_total": "int64",
    "quantity": "int64",
    **{name: "int64" for name in TIER_FIELDS},
}


def _get_parquet_schema(table_name: str) -> "pa.Schema":
    """Return PyArrow schema for a given table."""
    return pa.schema(
        [
            (name, pa.type_for_alias(_ARROW_TYPES.get(name, "string")))
            for name in TABLE_FIELDS[table_name]
        ]
    )


class SimulationWriter:
    """
    Handles data export for a kit allocation run.

    Output formats:
    - **CSV:** Universal compatibility.
    - **Parquet:** Columnar compression, fast analytics (requires pyarrow).
    """

    def __init__(
        self,
        output_dir: str = "data/output",
        enable_logging: bool = False,
        output_format: str = "csv",
        parquet_batch_size: int = 10000,
        inventory_sample_rounds: int = 24,
    ) -> None:
        """
        Args:
            output_dir: Directory for output files.
            enable_logging: If False, all logging is skipped (fast mode).
            output_format: "csv" or "parquet" (parquet requires pyarrow).
            parquet_batch_size: Rows to buffer before writing a Parquet row group.
            inventory_sample_rounds: Log inventory every N rounds (24 = daily).
        """
        self.output_dir = Path(output_dir)
        self.enable_logging = enable_logging
        self.output_format = output_format
        self.inventory_sample_rounds = max(1, inventory_sample_rounds)

        if output_format not in ("csv", "parquet"):
            raise ValueError(f"Unsupported output format: {output_format}")
        if output_format == "parquet" and not PARQUET_AVAILABLE:
            raise ImportError(
                "Parquet format requested but pyarrow is not installed. "
                "Install with: pip install kitflow[parquet]"
            )

        self._writers: dict[str, TableStream] = {}
        if self.enable_logging:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            ext = ".parquet" if output_format == "parquet" else ".csv"
            for table, fields in TABLE_FIELDS.items():
                path = self.output_dir / f"{table}{ext}"
                if output_format == "parquet":
                    self._writers[table] = ParquetTableStream(
                        path, _get_parquet_schema(table), parquet_batch_size
                    )
                else:
                    self._writers[table] = CSVTableStream(path, fields)

    def _write(self, table: str, rows: list[dict[str, Any]]) -> None:
        writer = self._writers.get(table)
        if writer is not None:
            writer.write_rows(rows)

    def log_loads(self, decisions: list[LoadDecision], day: int, hour: int) -> None:
        if not self.enable_logging:
            return
        rows = []
        for d in decisions:
            row: dict[str, Any] = {
                "day": day,
                "hour": hour,
                "departure_id": d.departure_id,
                "origin_id": d.origin_id,
                "destination_id": d.destination_id,
                "extra_total": d.extra.total,
                "headroom_bound": ",".join(sorted(t.value for t in d.headroom_bound)),
                "skipped_reason": d.skipped_reason or "",
            }
            row.update({t.value: d.quantity[t] for t in TIERS})
            rows.append(row)
        self._write("loads", rows)

    def log_acquisition(self, order: ResourceQuantity | None, day: int, hour: int) -> None:
        if not self.enable_logging or order is None:
            return
        row: dict[str, Any] = {"day": day, "hour": hour}
        row.update({t.value: order[t] for t in TIERS})
        self._write("acquisitions", [row])

    def log_penalties(self, penalties: list[PenaltyRecord], day: int, hour: int) -> None:
        if not self.enable_logging:
            return
        rows = [
            {
                "day": day,
                "hour": hour,
                "issued_day": p.day,
                "issued_hour": p.hour,
                "code": p.code,
                "kind": p.kind.value,
                "amount": p.amount,
                "departure_id": p.departure_id or "",
                "location_id": p.location_id or "",
                "tier": p.parsed.tier.value if p.parsed.tier else "",
                "quantity": p.parsed.quantity if p.parsed.quantity is not None else -1,
                "reason": p.reason,
            }
            for p in penalties
        ]
        self._write("penalties", rows)

    def log_inventory(self, ledger: InventoryLedger, day: int, hour: int) -> None:
        """Samples every location's stock; skipped between sample points."""
        if not self.enable_logging:
            return
        if (day * 24 + hour) % self.inventory_sample_rounds != 0:
            return
        rows = []
        for loc_id, quantity in sorted(ledger.snapshot().items()):
            row: dict[str, Any] = {"day": day, "hour": hour, "location_id": loc_id}
            row.update({t.value: quantity[t] for t in TIERS})
            rows.append(row)
        self._write("inventory", rows)

    def flush(self) -> None:
        for writer in self._writers.values():
            writer.flush()

    def save(self, final_metrics: dict[str, Any], penalty_summary: dict[str, Any]) -> None:
        """Close all tables and write the metrics and penalty summary JSON files."""
        if not self.enable_logging:
            print("SimulationWriter: Logging disabled, skipping export.")
            return

        self.close()
        counts = ", ".join(f"{t}={w.rows_written:,}" for t, w in self._writers.items())
        print(f"Streaming export complete: {counts}")

        with open(self.output_dir / "metrics.json", "w") as f:
            json.dump(final_metrics, f, indent=2, default=str)
        with open(self.output_dir / "penalty_summary.json", "w") as f:
            json.dump(penalty_summary, f, indent=2, default=str)

        print(f"Run data exported to {self.output_dir}")

    def close(self) -> None:
        for writer in self._writers.values():
            writer.close()

    @contextmanager
    def streaming_context(self) -> Iterator["SimulationWriter"]:
        """Context manager that guarantees file handles are closed on exit."""
        try:
            yield self
        finally:
            self.close()
