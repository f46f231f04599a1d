"""
Example script demonstrating the Python API.
"""

import numpy as np

from sar_drift import (
    DensityCalculator,
    EnvironmentalManager,
    LandInteraction,
    ObjectDynamics,
    ParticleEngine,
    PhysicsModels,
    Position,
    SimulationConfig,
    SimulationParams,
    SurvivalModel,
    TurbulenceModel,
    VictimProfile,
)
from sar_drift.conditions import CoverageArea


def main():
    """Run example simulation."""
    rng = np.random.default_rng(7)

    print("Registering environmental sources...")
    environment = EnvironmentalManager(rng=rng)
    environment.add_source("buoy-42035", {"wind": {"speed": 12.0, "direction": 45.0},
                                          "current": {"speed": 0.6, "direction": 80.0}}, weight=0.8)
    environment.add_source("forecast", {"wind": {"speed": 15.0, "direction": 60.0}}, weight=0.4)
    environment.add_operator_override("current", {"speed": 1.0, "direction": 90.0},
                                      location=CoverageArea(29.30, -94.70, radius_nm=2.0))

    print("Initializing engine...")
    engine = ParticleEngine(SimulationConfig(initial_particle_count=200, final_particle_count=2000,
                                             duration_hours=12), rng=rng)
    params = SimulationParams(
        lkp=Position(29.30, -94.70),
        environmental_manager=environment,
        physics=PhysicsModels(
            object_dynamics=ObjectDynamics("person-with-pfd", rng=rng),
            turbulence=TurbulenceModel("medium", rng=rng),
            land_interaction=LandInteraction(rng=rng),
        ),
    )

    print("Running simulation...")

    def progress(event):
        print(f"  {event.phase}: {event.progress:.1f}% (hour {event.current_hour})")

    def preliminary(results):
        print(f"  Preliminary results ready ({results.particle_count} particles)")

    result = engine.run_progressive_simulation(params, progress, preliminary)

    print("\nGenerating output...")
    density = DensityCalculator(grid_resolution=60)
    density.calculate_density_grid(result.particles)
    for polygon in density.generate_probability_polygons([0.5, 0.9]):
        print(f"  {polygon.percentage}% area: {polygon.area / 1e6:.2f} km²")
    density.save_heat_map("example_api_output")

    print("\nSimulation statistics:")
    for key, value in engine.get_statistics().items():
        print(f"  {key}: {value}")

    survival = SurvivalModel(VictimProfile(age=42, pfd=True, water_temp=68))
    print(f"\nSurvival after 12 h: {survival.estimate(12).percentage}%")

    print("\nDone! Check example_api_output.png and example_api_output.pgw")


if __name__ == "__main__":
    main()
