"""
SAR Drift - Monte Carlo drift simulation for search-and-rescue planning.

This package predicts where objects lost at sea drift to, using Lagrangian
particle tracking through blended wind and current data, and estimates
victim survival and search priority.
"""

__version__ = "0.1.0"
__author__ = "sar_drift contributors"

from .conditions import Channel, Current, Tide, Waves, Wind
from .controller import SimulationController, SimulationRejected, SimulationRequest
from .density import DensityCalculator
from .environment import BlendingStrategy, EnvironmentalManager
from .geo import Position
from .land import LandInteraction, PolygonLandClassifier
from .multi_victim import MultiVictimEngine
from .object_dynamics import ObjectDynamics, ObjectType
from .particle import Particle, ParticleCloud, ParticleStatus
from .simulator import CancellationToken, ParticleEngine, PhysicsModels, SimulationConfig, SimulationParams
from .survival import SurvivalModel, VictimProfile
from .timestepping import TimeSteppingSimulator
from .turbulence import TurbulenceModel

__all__ = [
    "BlendingStrategy",
    "CancellationToken",
    "Channel",
    "Current",
    "DensityCalculator",
    "EnvironmentalManager",
    "LandInteraction",
    "MultiVictimEngine",
    "ObjectDynamics",
    "ObjectType",
    "Particle",
    "ParticleCloud",
    "ParticleEngine",
    "ParticleStatus",
    "PhysicsModels",
    "PolygonLandClassifier",
    "Position",
    "SimulationConfig",
    "SimulationController",
    "SimulationParams",
    "SimulationRejected",
    "SimulationRequest",
    "SurvivalModel",
    "Tide",
    "TimeSteppingSimulator",
    "TurbulenceModel",
    "VictimProfile",
    "Waves",
    "Wind",
]
