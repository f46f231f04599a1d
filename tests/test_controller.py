"""
Tests for the simulation controller and command-line interface.
"""

import json

import pytest
from sar_drift.cli import main
from sar_drift.conditions import Channel, OperatorOverride, Source, SourcePayload, Wind
from sar_drift.controller import (
    MultiVictimResult,
    RunStatus,
    SimulationController,
    SimulationRejected,
    SimulationRequest,
    SimulationResult,
    run_single_victim,
)
from sar_drift.density import DensityCalculator
from sar_drift.geo import Position
from sar_drift.multi_victim import Victim


def small_request(**kwargs):
    defaults = dict(
        lkp=Position(29.7604, -95.3698),
        particle_count=30,
        initial_particle_count=10,
        duration_hours=2.0,
        seed=42,
    )
    defaults.update(kwargs)
    return SimulationRequest(**defaults)


@pytest.fixture
def controller():
    controller = SimulationController(max_workers=1)
    yield controller
    controller.shutdown()


def test_request_validation():
    """Test invalid requests are rejected before starting."""
    with pytest.raises(SimulationRejected):
        small_request(lkp=None).validate()
    with pytest.raises(SimulationRejected):
        small_request(particle_count=0).validate()
    with pytest.raises(SimulationRejected):
        small_request(object_type="submarine").validate()
    with pytest.raises(SimulationRejected):
        small_request(duration_hours=-1).validate()
    small_request().validate()


def test_run_single_victim_directly():
    """Test a synchronous progressive run produces density and survival output."""
    preliminary = []
    result = run_single_victim(small_request(), preliminary_callback=preliminary.append)

    assert isinstance(result, SimulationResult)
    assert len(preliminary) == 1
    assert result.statistics["total_particles"] == 30
    assert [s.hour for s in result.snapshots] == [1, 2]
    assert result.density.grid is not None
    assert {p.level for p in result.density.polygons} == {0.5, 0.9}
    assert result.survival["expected_survival_time"] > 0
    json.dumps(result.to_dict())


def test_controller_completes_run(controller):
    """Test a background run completes and exposes results and snapshots."""
    sim_id = controller.start_simulation(small_request(incident_id="case-1"))
    status = controller.wait(sim_id, timeout=120)

    assert status["status"] == "completed"
    assert status["progress"] == 100.0
    assert status["incident_id"] == "case-1"
    assert controller.get_results(sim_id) is not None
    assert controller.get_preliminary_results(sim_id).particle_count == 10
    assert controller.get_snapshot(sim_id, 1).hour == 1
    assert controller.get_snapshot(sim_id, 99) is None
    assert not controller.cancel(sim_id)


def test_controller_rejects_invalid_request(controller):
    """Test invalid requests raise and are not registered."""
    with pytest.raises(SimulationRejected):
        controller.start_simulation(small_request(lkp=None))
    assert controller.list_simulations() == []


def test_controller_records_failures(controller, monkeypatch):
    """Test an error during the run marks it failed with a message."""
    def broken_grid(self, particles, **kwargs):
        raise RuntimeError("density grid unavailable")

    monkeypatch.setattr(DensityCalculator, "calculate_density_grid", broken_grid)
    sim_id = controller.start_simulation(small_request(progressive=False))
    status = controller.wait(sim_id, timeout=120)

    assert status["status"] == "failed"
    assert "density grid unavailable" in status["error"]
    assert controller.get_results(sim_id) is None


def test_duplicate_victim_ids_rejected(controller):
    """Test victims sharing an id are rejected before any run starts."""
    victims = [
        Victim(id="a", name="Alpha", lkp=Position(29.76, -95.37)),
        Victim(id="a", name="Bravo", lkp=Position(29.77, -95.36)),
    ]
    with pytest.raises(SimulationRejected, match="Duplicate victim ids: a"):
        controller.start_simulation(small_request(lkp=None, victims=victims))
    assert controller.list_simulations() == []


def test_out_of_range_weights_rejected():
    """Test source and override weights outside [0, 1] are rejected."""
    bad_source = Source(name="bad", data=SourcePayload(wind=Wind(10, 0)), weight=5.0)
    with pytest.raises(SimulationRejected, match="Source weight"):
        small_request(sources=[bad_source]).validate()

    bad_override = OperatorOverride(Channel.WIND, Wind(10, 0), weight=-0.5)
    with pytest.raises(SimulationRejected, match="Override weight"):
        small_request(operator_overrides=[bad_override]).validate()

    with pytest.raises(SimulationRejected):
        small_request(history_interval=-1).validate()


def test_controller_cancel(controller):
    """Test a cancelled run ends in the cancelled state."""
    sim_id = controller.start_simulation(small_request(particle_count=2000, duration_hours=72.0,
                                                       progressive=False))
    assert controller.cancel(sim_id)
    status = controller.wait(sim_id, timeout=120)

    assert status["status"] == "cancelled"
    assert controller.get_results(sim_id) is None


def test_list_and_delete(controller):
    """Test filtering by incident and deleting runs."""
    first = controller.start_simulation(small_request(incident_id="a", duration_hours=1.0))
    second = controller.start_simulation(small_request(incident_id="b", duration_hours=1.0))
    controller.wait(first, timeout=120)
    controller.wait(second, timeout=120)

    assert [s["simulation_id"] for s in controller.list_simulations(incident_id="a")] == [first]
    assert len(controller.list_simulations(status=RunStatus.COMPLETED)) == 2
    assert controller.delete_simulation(first)
    assert not controller.delete_simulation(first)
    with pytest.raises(KeyError):
        controller.get_status(first)


def test_controller_multi_victim(controller):
    """Test requests with several victims run the multi-victim engine."""
    victims = [
        Victim(id="a", name="Alpha", lkp=Position(29.70, -95.30)),
        Victim(id="b", name="Bravo", lkp=Position(29.71, -95.31), object_type="life-raft-4"),
    ]
    sim_id = controller.start_simulation(small_request(lkp=None, victims=victims, duration_hours=1.0))
    assert controller.wait(sim_id, timeout=120)["status"] == "completed"

    result = controller.get_results(sim_id)
    assert isinstance(result, MultiVictimResult)
    assert result.combined.total_particles == 60
    assert result.get_snapshot_at_hour(1, victim_id="b") is not None
    assert len(result.priorities) == 2


def test_cli_writes_outputs(tmp_path):
    """Test the CLI writes JSON results and a georeferenced heat map."""
    out = tmp_path / "drift"
    main(["--lat", "29.7604", "--lng", "-95.3698", "--particles", "20",
          "--initial-particles", "10", "--hours", "1", "--seed", "1", "-o", str(out)])

    data = json.loads((tmp_path / "drift.json").read_text())
    assert data["statistics"]["total_particles"] == 20
    assert (tmp_path / "drift.png").exists()
    assert (tmp_path / "drift.pgw").exists()


def test_cli_config_overrides_arguments(tmp_path):
    """Test config file keys take precedence over command-line values."""
    config = {
        "lat": 29.7604,
        "lng": -95.3698,
        "particles": 15,
        "initial_particles": 5,
        "hours": 1,
        "seed": 3,
        "sources": [{"name": "buoy", "data": {"wind": {"speed": 12, "direction": 45}}, "weight": 0.8}],
        "output": str(tmp_path / "from_config"),
    }
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(config))

    main(["-c", str(config_file), "--particles", "500"])

    data = json.loads((tmp_path / "from_config.json").read_text())
    assert data["statistics"]["total_particles"] == 15


def test_cli_rejects_missing_position(tmp_path):
    """Test the CLI exits when no position is given."""
    with pytest.raises(SystemExit):
        main(["-o", str(tmp_path / "none")])


def test_cli_rejects_bad_source_weight(tmp_path, capsys):
    """Test a config source weight above 1 exits with an error and no output."""
    config = {
        "lat": 29.7604,
        "lng": -95.3698,
        "sources": [{"name": "buoy", "data": {"wind": {"speed": 12, "direction": 45}}, "weight": 5}],
    }
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(config))

    with pytest.raises(SystemExit):
        main(["-c", str(config_file), "-o", str(tmp_path / "bad")])
    assert "Source weight" in capsys.readouterr().out
    assert not (tmp_path / "bad.json").exists()


def test_cli_reports_run_errors(tmp_path, monkeypatch):
    """Test a value error raised while running exits instead of propagating."""
    def failing_run(request, callback):
        raise ValueError("no usable particles")

    monkeypatch.setattr("sar_drift.cli.run_single_victim", failing_run)
    with pytest.raises(SystemExit):
        main(["--lat", "29.7604", "--lng", "-95.3698", "-o", str(tmp_path / "err")])
    assert not (tmp_path / "err.json").exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
