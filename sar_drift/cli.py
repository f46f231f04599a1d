"""
Command-line interface for the drift simulator.
"""

import argparse
import json
import logging
import sys

from .conditions import Channel, CoverageArea, OperatorOverride, Source, SourcePayload, channel_value_from_dict
from .controller import SimulationRejected, SimulationRequest, run_multi_victim, run_single_victim
from .density import DensityCalculator
from .geo import Position
from .multi_victim import Victim
from .simulator import (
    DEFAULT_DURATION_HOURS,
    DEFAULT_FINAL_PARTICLES,
    DEFAULT_HISTORY_INTERVAL,
    DEFAULT_INITIAL_PARTICLES,
    DEFAULT_TIME_STEP,
    PositionalUncertainty,
    TemporalUncertainty,
)
from .survival import VictimProfile


def load_config(config_file: str) -> dict:
    """Load configuration from JSON file."""
    with open(config_file, 'r') as f:
        return json.load(f)


def parse_location(data):
    if not data:
        return None
    return CoverageArea(lat=data["lat"], lng=data["lng"], radius_nm=data.get("radius", 10.0))


def parse_source(data: dict) -> Source:
    return Source(
        name=data["name"],
        data=SourcePayload.from_dict(data["data"]),
        weight=data.get("weight", 0.5),
        location=parse_location(data.get("location")),
    )


def parse_override(data: dict) -> OperatorOverride:
    channel = Channel(data.get("channel", data.get("type")))
    return OperatorOverride(
        channel=channel,
        data=channel_value_from_dict(channel, data["data"]),
        location=parse_location(data.get("location")),
        weight=data.get("weight", 1.0),
    )


def parse_victim(data: dict, index: int) -> Victim:
    lkp = data.get("lkp")
    return Victim(
        id=data.get("id", f"victim_{index + 1}"),
        name=data.get("name", f"Victim {index + 1}"),
        lkp=Position(lkp["lat"], lkp["lng"]) if lkp else None,
        profile=VictimProfile.from_dict(data.get("profile", {})),
        object_type=data.get("object_type", "person-in-water"),
        uncertainty=PositionalUncertainty(data.get("uncertainty", {}).get("radius", 0.5)),
        time_uncertainty=TemporalUncertainty(data.get("time_uncertainty", {}).get("window", 30.0)),
    )


def progress_callback(event):
    """Print simulation progress."""
    print(f"{event.phase}: {event.progress:5.1f}% (hour {event.current_hour})")


def victim_progress_callback(progress):
    print(f"{progress.victim_name}: {progress.progress:5.1f}%")


def build_request(args, config: dict) -> SimulationRequest:
    """Command-line values overridden by any matching config-file keys."""
    lat = config.get("lat", args.lat)
    lng = config.get("lng", args.lng)
    return SimulationRequest(
        lkp=Position(lat, lng) if lat is not None and lng is not None else None,
        incident_id=config.get("incident_id"),
        object_type=config.get("object_type", args.object_type),
        particle_count=config.get("particles", args.particles),
        initial_particle_count=config.get("initial_particles", args.initial_particles),
        duration_hours=config.get("hours", args.hours),
        time_step=config.get("time_step", args.time_step),
        history_interval=config.get("history_interval", args.history_interval),
        uncertainty=PositionalUncertainty(config.get("radius", args.radius)),
        time_uncertainty=TemporalUncertainty(config.get("window", args.window)),
        blending_strategy=config.get("blending", args.blending),
        turbulence_intensity=config.get("turbulence", args.turbulence),
        sources=[parse_source(s) for s in config.get("sources", [])],
        operator_overrides=[parse_override(o) for o in config.get("overrides", [])],
        victim_profile=VictimProfile.from_dict(config.get("victim_profile", {})),
        victims=[parse_victim(v, i) for i, v in enumerate(config.get("victims", []))],
        progressive=not config.get("no_progressive", args.no_progressive),
        seed=config.get("seed", args.seed),
    )


def main(argv=None):
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Monte Carlo drift simulator for search-and-rescue planning"
    )
    parser.add_argument("-c", "--config", type=str, help="Configuration file (JSON)")
    parser.add_argument("--lat", type=float, help="Last known latitude (degrees)")
    parser.add_argument("--lng", type=float, help="Last known longitude (degrees)")
    parser.add_argument("--object-type", default="person-in-water",
                        help="Drifting object type (default: person-in-water)")
    parser.add_argument("--particles", type=int, default=DEFAULT_FINAL_PARTICLES,
                        help=f"Number of particles (default: {DEFAULT_FINAL_PARTICLES})")
    parser.add_argument("--initial-particles", type=int, default=DEFAULT_INITIAL_PARTICLES,
                        help=f"Preliminary-phase particles (default: {DEFAULT_INITIAL_PARTICLES})")
    parser.add_argument("--hours", type=float, default=DEFAULT_DURATION_HOURS,
                        help=f"Simulation length in hours (default: {DEFAULT_DURATION_HOURS:g})")
    parser.add_argument("--time-step", type=float, default=DEFAULT_TIME_STEP,
                        help=f"Time step in seconds (default: {DEFAULT_TIME_STEP:g})")
    parser.add_argument("--history-interval", type=int, default=DEFAULT_HISTORY_INTERVAL,
                        help="Steps between recorded trajectory points, 0 to keep none (default: 0)")
    parser.add_argument("--radius", type=float, default=0.5,
                        help="Positional uncertainty radius in nautical miles (default: 0.5)")
    parser.add_argument("--window", type=float, default=30.0,
                        help="Time-of-loss uncertainty window in minutes (default: 30)")
    parser.add_argument("--blending", default="weighted-average",
                        choices=["weighted-average", "random-selection", "ensemble"],
                        help="Environmental source blending strategy")
    parser.add_argument("--turbulence", default="medium", choices=["low", "medium", "high"],
                        help="Turbulence intensity (default: medium)")
    parser.add_argument("--no-progressive", action="store_true",
                        help="Skip the preliminary low-particle phase")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("-o", "--output", type=str, default="drift_output",
                        help="Output filename prefix (default: drift_output)")
    parser.add_argument("--log", dest="loglevel", default="INFO",
                        help="Logging level (DEBUG/INFO/WARN)")

    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.loglevel.upper(), logging.INFO),
                        format="%(asctime)s | %(levelname)s | %(message)s")

    config = load_config(args.config) if args.config else {}
    output = config.get("output", args.output)

    try:
        request = build_request(args, config)
        request.validate()
    except (SimulationRejected, ValueError, KeyError, TypeError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("=" * 60)
    print("Search and Rescue Drift Simulator")
    print("=" * 60)
    if request.is_multi_victim:
        print(f"Victims: {len(request.victims)}")
    elif request.lkp is not None:
        print(f"LKP: ({request.lkp.lat:.4f}°, {request.lkp.lng:.4f}°), radius {request.uncertainty.radius_nm} nm")
    print(f"Particles: {request.particle_count}")
    print(f"Duration: {request.duration_hours:g} hours")
    print(f"Sources: {len(request.sources)}, overrides: {len(request.operator_overrides)}")
    print("=" * 60)

    print("\nRunning simulation...")
    density = DensityCalculator()
    try:
        if request.is_multi_victim:
            result = run_multi_victim(request, victim_progress_callback)
        else:
            result = run_single_victim(request, progress_callback)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if request.is_multi_victim:
        grid = result.combined.density if result.combined else None
        print("\nVictim priorities:")
        for p in result.priorities:
            print(f"  {p.victim_name}: score {p.priority_score:.1f}, "
                  f"survival {p.survival_percentage}% ({p.urgency})")
    else:
        grid = result.density.grid
        stats = result.statistics
        print("\nSimulation complete!")
        print(f"Active particles: {stats['active_particles']}, "
              f"beached: {stats['beached_particles']} ({stats['fraction_beached'] * 100:.1f}%)")
        for polygon in result.density.polygons:
            print(f"  {polygon.percentage}% probability area: {polygon.area / 1e6:.2f} km²")
        print(f"Expected survival time: {result.survival['expected_survival_time']:.1f} hours")

    with open(f"{output}.json", 'w') as f:
        json.dump(result.to_dict(), f, indent=2)
    print(f"\nResults written to {output}.json")

    if grid is not None:
        density.save_heat_map(output, density_grid=grid)
        print(f"Heat map written to {output}.png, {output}.pgw, {output}_plot.png")
    else:
        print("No active particles; heat map skipped")


if __name__ == "__main__":
    main()
