"""
Tests for particles and the Monte Carlo particle engine.
"""

import numpy as np
import pytest
from sar_drift.environment import EnvironmentalManager
from sar_drift.geo import Displacement, Position, haversine_distance
from sar_drift.land import LandInteraction, PolygonLandClassifier
from sar_drift.object_dynamics import ObjectDynamics, ObjectProfile
from sar_drift.particle import Particle, ParticleCloud, ParticleStatus
from sar_drift.simulator import (
    CancellationToken,
    ParticleEngine,
    PhysicsModels,
    PositionalUncertainty,
    PreliminaryResults,
    SimulationCancelled,
    SimulationConfig,
    SimulationParams,
    TemporalUncertainty,
    advance_particles,
)
from sar_drift.turbulence import TurbulenceModel, TurbulenceResult

LKP = Position(29.7604, -95.3698)
COAST = [(-95.0, 29.0), (-94.0, 29.0), (-94.0, 30.5), (-95.0, 30.5)]


class StillWater:
    """Turbulence stand-in with no displacement."""

    def apply_turbulence(self, lat, lng, time_step):
        zero = Displacement()
        return TurbulenceResult(zero, zero, zero, zero)


def make_params(lkp=LKP, current_speed=1.0, land=None, turbulence=None, bounds=None,
                jibe_handler=None, dynamics=None, seed=0):
    rng = np.random.default_rng(seed)
    manager = EnvironmentalManager(rng=rng)
    manager.add_source("test", {
        "wind": {"speed": 0.0, "direction": 90.0},
        "current": {"speed": current_speed, "direction": 90.0},
    })
    physics = PhysicsModels(
        object_dynamics=dynamics or ObjectDynamics(rng=rng),
        turbulence=turbulence or TurbulenceModel(rng=rng),
        land_interaction=land or LandInteraction(rng=rng),
        jibe_handler=jibe_handler,
    )
    return SimulationParams(lkp=lkp, environmental_manager=manager, physics=physics, bounds=bounds)


def make_engine(initial=10, final=30, hours=2.0, seed=0):
    config = SimulationConfig(initial_particle_count=initial, final_particle_count=final,
                              duration_hours=hours)
    return ParticleEngine(config, rng=np.random.default_rng(seed))


def test_particle_status_is_terminal():
    """Test a beached particle cannot return to active."""
    particle = Particle(id=0, lat=29.0, lng=-95.0)
    assert particle.is_active
    assert len(particle.history) == 1
    particle.set_status(ParticleStatus.BEACHED)
    particle.set_status(ParticleStatus.BEACHED)
    with pytest.raises(ValueError):
        particle.set_status(ParticleStatus.ACTIVE)


def test_particle_seeding_within_radius():
    """Test 1000 seeded particles lie within 0.5 nm with cohorts inside the window."""
    cloud = ParticleCloud()
    cloud.create_particles(LKP, radius_m=926.0, time_window_s=1800.0, num_particles=1000,
                           rng=np.random.default_rng(0))

    assert len(cloud) == 1000
    assert len({p.id for p in cloud.particles}) == 1000
    for p in cloud.particles:
        assert haversine_distance(LKP.lat, LKP.lng, p.lat, p.lng) <= 926.0 * 1.001
        assert -1800.0 <= p.time_cohort <= 1800.0
    assert cloud.get_positions().shape == (1000, 2)
    assert cloud.to_geojson()["features"][0]["properties"]["status"] == "active"


def test_config_validation():
    """Test non-positive counts and steps are rejected."""
    with pytest.raises(ValueError):
        SimulationConfig(final_particle_count=0)
    with pytest.raises(ValueError):
        SimulationConfig(time_step=0)
    engine = make_engine()
    with pytest.raises(ValueError):
        engine.initialize_particles(None, PositionalUncertainty(), TemporalUncertainty(), 10)


def test_run_conserves_particles_and_snapshots_hourly():
    """Test every snapshot accounts for all particles once per hour."""
    engine = make_engine(hours=2.0)
    result = engine.run_simulation(make_params())

    assert result.particle_count == 30
    assert [s.hour for s in result.snapshots] == [1, 2]
    for snapshot in result.snapshots:
        assert snapshot.total == 30
        assert snapshot.active + snapshot.beached + snapshot.out_of_bounds == snapshot.total
        assert len(snapshot.particles) == 30

    stats = engine.get_statistics()
    assert stats["total_particles"] == 30
    assert stats["simulation_time"] == pytest.approx(7200.0)
    assert engine.get_snapshot_at_hour(2) is result.snapshots[-1]
    assert engine.get_snapshot_at_hour(5) is None


def test_current_carries_particles_east():
    """Test a one knot eastward current moves the cloud about 1 nm per hour."""
    engine = make_engine(hours=1.0)
    params = make_params(turbulence=StillWater())
    engine.initialize_particles(LKP, PositionalUncertainty(0.01), TemporalUncertainty(), 20)
    start = [(p.lat, p.lng) for p in engine.particles]
    engine.run_simulation(params)

    for (lat, lng), p in zip(start, engine.particles):
        assert p.lng > lng
        assert haversine_distance(lat, lng, p.lat, p.lng) == pytest.approx(1852.0, rel=0.01)


def test_beached_particles_stay_put():
    """Test particles that reach the shore beach and never move again."""
    land = LandInteraction(PolygonLandClassifier([COAST]), beaching_probability=1.0,
                           rng=np.random.default_rng(1))
    lkp = Position(29.7, -95.05)
    engine = make_engine(final=20, hours=3.0)
    result = engine.run_simulation(make_params(lkp=lkp, current_speed=2.0, land=land))

    assert engine.get_beached_particle_count() > 0
    first, last = result.snapshots[1], result.snapshots[-1]
    final_by_id = {p.id: p for p in last.particles}
    for p in first.particles:
        if p.status is ParticleStatus.BEACHED:
            assert final_by_id[p.id].status is ParticleStatus.BEACHED
            assert (final_by_id[p.id].lat, final_by_id[p.id].lng) == (p.lat, p.lng)
    for p in engine.particle_cloud.get_beached_particles():
        assert p.lng <= -95.0 + 1e-3


def test_out_of_bounds_when_bounds_set():
    """Test particles leaving the domain are marked out of bounds."""
    bounds = (29.6, 29.9, -95.4, -95.34)
    engine = make_engine(final=15, hours=2.0)
    engine.run_simulation(make_params(current_speed=2.0, turbulence=StillWater(), bounds=bounds))

    stats = engine.get_statistics()
    assert stats["out_of_bounds_particles"] == 15
    assert stats["active_particles"] == 0
    for p in engine.particles:
        assert p.lng > -95.34


def test_out_of_bounds_after_shore_reflection():
    """Test a particle pushed back off the shore outside the domain leaves it."""
    land = LandInteraction(PolygonLandClassifier([COAST]), beaching_probability=0.0,
                           rng=np.random.default_rng(0))
    params = make_params(current_speed=2.0, land=land, turbulence=StillWater())
    particle = Particle(id=0, lat=29.7, lng=-95.001)
    bounds = (29.6, 29.9, -95.4, -95.3)

    advance_particles([particle], 600.0, 600.0, params.environmental_manager, params.physics,
                      np.random.default_rng(0), bounds=bounds)

    assert particle.status is ParticleStatus.OUT_OF_BOUNDS
    assert land.is_on_water(particle.lat, particle.lng).on_water
    assert particle.lng > -95.3


def test_trajectory_history_interval():
    """Test trajectories keep only the seed point by default and hourly points when asked."""
    engine = make_engine(final=5, hours=2.0)
    engine.run_simulation(make_params(turbulence=StillWater()))
    assert all(len(p.history) == 1 for p in engine.particles)

    config = SimulationConfig(initial_particle_count=5, final_particle_count=5,
                              duration_hours=2.0, history_interval=60)
    engine = ParticleEngine(config, rng=np.random.default_rng(0))
    engine.run_simulation(make_params(turbulence=StillWater()))
    for p in engine.particles:
        assert [point.time for point in p.history] == [0.0, 3600.0, 7200.0]
        assert (p.history[-1].lat, p.history[-1].lng) == (p.lat, p.lng)

    with pytest.raises(ValueError):
        SimulationConfig(history_interval=-1)


def test_jibe_handler_is_called():
    """Test the optional jibe hook receives drift on jibe events."""
    calls = []

    def handler(particle, drift):
        calls.append(particle.id)
        return drift.scaled(-1)

    rng = np.random.default_rng(0)
    dynamics = ObjectDynamics(custom_profile=ObjectProfile(0.03, 20, 3600.0, "always jibes"), rng=rng)
    engine = make_engine(final=5, hours=1.0)
    engine.run_simulation(make_params(dynamics=dynamics, jibe_handler=handler))
    assert len(calls) == 5 * 60


def test_progressive_phases():
    """Test preliminary progress stays below 50% and the full phase ends at 100%."""
    engine = make_engine(initial=8, final=20, hours=1.0)
    items = list(engine.iter_progressive_simulation(make_params()))

    split = next(i for i, item in enumerate(items) if isinstance(item, PreliminaryResults))
    assert items[split].particle_count == 8
    assert all(0.0 <= e.progress < 50.0 for e in items[:split])
    assert all(50.0 <= e.progress <= 100.0 for e in items[split + 1:])
    assert items[-1].progress == 100.0
    assert len(engine.particles) == 20


def test_run_progressive_callbacks():
    """Test progressive runs report preliminary results once."""
    preliminary = []
    progress = []
    engine = make_engine(initial=5, final=10, hours=1.0)
    result = engine.run_progressive_simulation(make_params(), progress.append, preliminary.append)

    assert len(preliminary) == 1
    assert result.particle_count == 10
    assert progress[-1].phase == "full"


def test_cancellation():
    """Test a cancelled token stops the run."""
    token = CancellationToken()
    token.cancel()
    with pytest.raises(SimulationCancelled):
        make_engine().run_simulation(make_params(), cancel_token=token)

    token = CancellationToken()
    events = make_engine().iter_simulation(make_params(), token)
    next(events)
    token.cancel()
    with pytest.raises(SimulationCancelled):
        next(events)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
