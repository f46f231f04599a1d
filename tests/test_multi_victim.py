"""
Tests for multi-victim simulation and cross-victim zones.
"""

import numpy as np
import pytest
from sar_drift.environment import EnvironmentalManager
from sar_drift.geo import Position
from sar_drift.multi_victim import MultiVictimEngine, MultiVictimParams
from sar_drift.survival import VictimProfile


def make_params(particles=30, hours=1.0):
    manager = EnvironmentalManager(rng=np.random.default_rng(0))
    manager.add_source("test", {
        "wind": {"speed": 10.0, "direction": 45.0},
        "current": {"speed": 0.5, "direction": 90.0},
    })
    return MultiVictimParams(environmental_manager=manager, particle_count=particles,
                             duration_hours=hours)


def test_add_victim_defaults_and_validation():
    """Test default ids, duplicate ids and missing positions."""
    engine = MultiVictimEngine(rng=np.random.default_rng(0))
    first = engine.add_victim(Position(29.7, -95.3))
    assert (first.id, first.name) == ("victim_1", "Victim 1")

    with pytest.raises(ValueError):
        engine.add_victim(Position(29.7, -95.3), victim_id="victim_1")
    with pytest.raises(ValueError):
        engine.add_victim(None)
    with pytest.raises(ValueError):
        engine.add_victim(Position(29.7, -95.3), object_type="submarine")


def test_combined_zone_counts_every_particle():
    """Test the combined zone covers the particles of all victims."""
    engine = MultiVictimEngine(rng=np.random.default_rng(1))
    engine.add_victim(Position(29.70, -95.30))
    engine.add_victim(Position(29.72, -95.28), object_type="life-raft-4")

    progress = []
    results = engine.run_all_simulations(make_params(), progress.append)
    assert len(results) == 2
    assert {p.victim_index for p in progress} == {0, 1}

    combined = engine.generate_combined_zone()
    assert combined.total_particles == sum(len(r.particles) for r in results) == 60
    assert combined.density.grid.max() == pytest.approx(1.0)
    assert engine.get_statistics()["total_particles"] == 60


def test_intersection_needs_two_victims():
    """Test no intersection is produced for a single victim."""
    engine = MultiVictimEngine(rng=np.random.default_rng(2))
    engine.add_victim(Position(29.7, -95.3))
    engine.run_all_simulations(make_params())
    assert engine.generate_intersection_zone() is None


def test_intersection_of_distant_victims_is_empty():
    """Test victims a degree apart share no 50% region."""
    engine = MultiVictimEngine(rng=np.random.default_rng(3))
    engine.add_victim(Position(29.0, -95.0))
    engine.add_victim(Position(30.0, -94.0))
    engine.run_all_simulations(make_params())

    zone = engine.generate_intersection_zone()
    assert zone.empty
    assert zone.vertices == []
    assert zone.area == 0.0


def test_intersection_of_colocated_victims():
    """Test victims lost at the same spot overlap."""
    engine = MultiVictimEngine(rng=np.random.default_rng(4))
    engine.add_victim(Position(29.7, -95.3))
    engine.add_victim(Position(29.7, -95.3))
    engine.run_all_simulations(make_params(particles=60))

    zone = engine.generate_intersection_zone()
    assert not zone.empty
    assert len(zone.vertices) == 4
    assert zone.victim_count == 2


def test_priority_list_ordering():
    """Test an unconscious victim without a PFD ranks above a protected one."""
    engine = MultiVictimEngine()
    engine.add_victim(Position(29.7, -95.3), name="Protected",
                      profile=VictimProfile(pfd=True, clothing="drysuit"))
    engine.add_victim(Position(29.7, -95.3), name="Unconscious",
                      profile=VictimProfile(consciousness="unconscious", water_temp=55))

    priorities = engine.get_victim_priority_list(2.0)
    assert [p.victim_name for p in priorities] == ["Unconscious", "Protected"]
    assert priorities[0].priority_score >= priorities[1].priority_score


def test_export_all():
    """Test the export carries victims, zones and priorities."""
    engine = MultiVictimEngine(rng=np.random.default_rng(5))
    engine.add_victim(Position(29.70, -95.30))
    engine.add_victim(Position(29.71, -95.30))
    engine.run_all_simulations(make_params())

    export = engine.export_all()
    assert len(export["victims"]) == 2
    assert len(export["simulations"]) == 2
    assert export["combined"]["total_particles"] == 60
    assert len(export["priorities"]) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
