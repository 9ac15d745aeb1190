import importlib.util
from pathlib import Path

import pytest

from kitflow.generators import NetworkGenerator
from kitflow.simulation.clock import RunHorizon
from kitflow.simulation.orchestrator import Orchestrator
from kitflow.simulation.sandbox import SandboxEvaluator
from kitflow.simulation.writer import SimulationWriter

pytest.importorskip("pandas")

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "analyze_results.py"


def load_script():
    spec = importlib.util.spec_from_file_location("analyze_results", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def run_dir(tmp_path):
    world = NetworkGenerator(seed=4).generate(n_spokes=3)
    horizon = RunHorizon(2)
    writer = SimulationWriter(output_dir=str(tmp_path), enable_logging=True)
    orchestrator = Orchestrator(
        world, SandboxEvaluator(world, horizon=horizon, seed=4), writer=writer, horizon=horizon
    )
    with writer.streaming_context():
        orchestrator.run()
    orchestrator.save_results()
    return tmp_path, orchestrator


def test_analyze_run_output(run_dir, capsys):
    path, orchestrator = run_dir
    analysis = load_script()

    stats = analysis.analyze_results(str(path))
    assert stats["metrics"]["rounds_played"] == 48
    assert stats["loads"]["total_kits"] == sum(
        orchestrator.monitor.get_report()["units_loaded"].values()
    )
    assert stats.get("penalties", {}).get("total", 0.0) == pytest.approx(
        sum(p.amount for p in orchestrator.penalties)
    )
    assert stats["inventory"]["snapshot_days"] == 2

    analysis.print_report(stats)
    assert "KIT ALLOCATION RUN ANALYSIS REPORT" in capsys.readouterr().out


def test_missing_directory(tmp_path):
    analysis = load_script()
    with pytest.raises(FileNotFoundError):
        analysis.analyze_results(str(tmp_path / "nope"))
