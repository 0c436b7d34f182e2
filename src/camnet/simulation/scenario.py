"""Scenario files -- pydantic models plus JSON load/save.

A scenario describes the world bounds, the initial cameras and objects,
an optional vision graph (which cameras are neighbours), and a list of
scripted events keyed by time step.  Angles are in degrees in the file
and converted to radians when the engine builds the cameras.

Usage:
    from camnet.simulation.scenario import load_scenario
    scenario = load_scenario("scenarios/two_cameras.json")
    engine = SimulationEngine(seed=1, scenario=scenario)
"""

from __future__ import annotations

import json
import math
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .engine import SimulationEngine


class EventKind(str, Enum):
    ADD = "add"
    ERROR = "error"
    RESTORE = "restore"
    CHANGE = "change"
    REMOVE = "remove"


class Participant(str, Enum):
    CAMERA = "camera"
    OBJECT = "object"
    REGISTRATION = "registration"


class CameraSettings(BaseModel):
    name: str
    x: float
    y: float
    heading: float = 0.0           # degrees, 0 = north
    fov: float = 90.0              # degrees
    range: float = 10.0
    comm: int = 0                  # policy index, 4 = custom_comm
    custom_comm: Optional[str] = None
    ai_algorithm: str = "active"
    bandit: Optional[str] = None
    limit: int = 0


class TargetSettings(BaseModel):
    features: list[float]
    x: float
    y: float
    heading: float = 0.0           # degrees
    speed: float = 1.0
    movement: str = ""
    waypoints: list[tuple[float, float]] = Field(default_factory=list)
    mean: float = 0.0
    std: float = 1.0


class EventSettings(BaseModel):
    """A scripted event applied at the start of ``timestep``."""

    timestep: int
    kind: EventKind
    participant: Participant
    name: Optional[str] = None                  # camera events
    features: Optional[list[float]] = None      # object error/remove
    duration: int = -1                          # error: ticks offline, -1 = forever
    camera: Optional[CameraSettings] = None     # add camera
    target: Optional[TargetSettings] = None     # add object
    x: Optional[float] = None                   # change
    y: Optional[float] = None
    heading: Optional[float] = None
    fov: Optional[float] = None
    range: Optional[float] = None


class VisionGraphSettings(BaseModel):
    """Neighbour lists per camera.

    Every listed link starts at strength 1.0 unless *strengths* gives the
    camera's starting links explicitly, as saved snapshots do.
    """

    static: bool = False
    links: dict[str, list[str]] = Field(default_factory=dict)
    strengths: dict[str, dict[str, float]] = Field(default_factory=dict)


class Scenario(BaseModel):
    name: str = "scenario"
    min_x: float = -30.0
    max_x: float = 30.0
    min_y: float = -30.0
    max_y: float = 30.0
    cameras: list[CameraSettings] = Field(default_factory=list)
    objects: list[TargetSettings] = Field(default_factory=list)
    events: list[EventSettings] = Field(default_factory=list)
    vision_graph: Optional[VisionGraphSettings] = None

    def events_at(self, timestep: int) -> list[EventSettings]:
        return [e for e in self.events if e.timestep == timestep]

    @classmethod
    def from_engine(cls, engine: SimulationEngine) -> Scenario:
        """Snapshot the engine's current cameras, objects and neighbour graph."""
        cameras = []
        links: dict[str, list[str]] = {}
        strengths: dict[str, dict[str, float]] = {}
        for cam in engine.cameras:
            node = cam.ai_node
            cameras.append(CameraSettings(
                name=cam.camera_id,
                x=cam.x,
                y=cam.y,
                heading=math.degrees(cam.heading),
                fov=math.degrees(cam.viewing_angle),
                range=cam.range,
                comm=node.comm.index if node.comm is not None else 0,
                ai_algorithm=node.kind,
                bandit=node.bandit_solver.name if node.bandit_solver is not None else None,
                limit=cam.configured_limit,
            ))
            links[cam.camera_id] = cam.neighbour_ids
            strengths[cam.camera_id] = node.vision_graph.base

        objects = []
        for target in engine.targets:
            described = target.movement.describe()
            objects.append(TargetSettings(
                features=list(target.features),
                x=target.x,
                y=target.y,
                heading=math.degrees(target.heading),
                speed=target.speed,
                movement=described["movement"],
                waypoints=[tuple(w) for w in described.get("waypoints", [])],
                mean=described.get("mean", 0.0),
                std=described.get("std", 1.0),
            ))

        bounds = engine.bounds
        source = engine.scenario
        # Event timesteps are rebased so the snapshot replays from tick 0
        now = engine.time_step
        pending = [
            e.model_copy(update={"timestep": e.timestep - now})
            for e in (source.events if source is not None else [])
            if e.timestep >= now
        ]
        return cls(
            name=source.name if source is not None else "snapshot",
            min_x=bounds.min_x,
            max_x=bounds.max_x,
            min_y=bounds.min_y,
            max_y=bounds.max_y,
            cameras=cameras,
            objects=objects,
            events=pending,
            vision_graph=VisionGraphSettings(static=engine.static_vision_graph, links=links,
                                             strengths=strengths),
        )


def load_scenario(path: str | Path) -> Scenario:
    """Read and validate a JSON scenario file.

    Raises:
        ConfigurationError: the file is missing, is not JSON, or does not
            match the scenario schema.
    """
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read scenario {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Scenario {path} is not valid JSON: {exc}") from exc
    try:
        return Scenario.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Scenario {path} is invalid: {exc}") from exc


def save_scenario(engine: SimulationEngine, path: str | Path) -> Path:
    """Write the engine's current state as a scenario file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    scenario = Scenario.from_engine(engine)
    with path.open("w", encoding="utf-8") as f:
        json.dump(scenario.model_dump(mode="json"), f, indent=2)
    return path
