"""SimulationEngine -- synchronous tick loop driving the camera network.

Architecture
------------
The engine is the authoritative owner of every CameraAgent and Target.
It has no threads: callers construct it, call ``tick()`` as often as they
like, and finish with ``close()``.  Each tick runs a fixed phase order,
because every phase reads state the previous one wrote:

  1. scripted events for this time step
  2. global registration flush (if enabled)
  3. target movement
  4. random camera failure (ERROR stream)
  5. visibility of every target for every online camera
  6. strategy re-selection and node hot-swap (bandit cameras)
  7. owners advertise their targets
  8. message bookkeeping and delayed-message forwarding
  9. node updates (auctions close here), metrics, statistics commit

Randomness comes exclusively from the engine's RandomStreamSet, so two
engines built from the same seed and scenario stay in lockstep.

Configuration errors (bad coordinates, unknown identifiers, invalid
parameter files) raise ConfigurationError before the first tick.
Statistics write failures are logged and the tick carries on.
"""

from __future__ import annotations

import csv
import json
import math
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from .bandit import StrategySelector
from .camera import CameraAgent
from .decision import DecisionNode
from .exceptions import ConfigurationError, ConsistencyViolation, StatisticsIOError
from .messages import Message, MessageType
from .movement import WorldBounds, create_movement
from .overlap import network_overlap
from .random_streams import RandomStreamSet, RandomUse
from .registration import GlobalRegistration
from .registry import (
    STRATEGY_TABLE,
    bandit_class,
    create_policy,
    node_class,
    strategy_for,
    strategy_index_for,
)
from .scenario import EventKind, EventSettings, Participant, Scenario, save_scenario
from .stats import Statistics, safe_record
from .target import Target
from .vision_graph import VisionGraph

if TYPE_CHECKING:
    from ..config import Settings


def load_params(path: str | Path) -> dict[str, Any]:
    """Read a JSON object of decision-node parameters."""
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            params = json.load(f)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read parameter file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Parameter file {path} is not valid JSON: {exc}") from exc
    if not isinstance(params, dict):
        raise ConfigurationError(f"Parameter file {path} must hold a JSON object")
    return params


class SimulationEngine:
    """Owns cameras and targets and advances them one tick at a time."""

    def __init__(
        self,
        seed: int = 0,
        output: str | Path | None = None,
        scenario: Scenario | None = None,
        use_global: bool = False,
        settings: Settings | None = None,
        param_file: str | Path | None = None,
    ) -> None:
        if settings is None:
            from ..config import settings as default_settings
            settings = default_settings
        self.settings = settings
        self.random = RandomStreamSet(seed)
        self.output = Path(output) if output is not None else None
        try:
            self.stats = Statistics(self.output, all_statistics=settings.all_statistics)
        except StatisticsIOError as exc:
            logger.warning(f"{exc}; keeping statistics in memory only")
            self.stats = Statistics(None)
        self.registration = GlobalRegistration() if use_global else None
        self.scenario = scenario
        self.bounds = WorldBounds(settings.min_x, settings.max_x, settings.min_y, settings.max_y)
        self.static_vision_graph = False

        self._cameras: list[CameraAgent] = []
        self._targets: list[Target] = []
        self._next_id = 0
        self._explicit_graph = False
        self._params: dict[str, Any] = load_params(param_file) if param_file else {}

        if scenario is not None:
            self.interpret_file(scenario)
        logger.info(
            f"Simulation ready: seed={seed}, {len(self._cameras)} cameras, "
            f"{len(self._targets)} objects, global={use_global}"
        )

    # -- Accessors --------------------------------------------------------------

    @property
    def cameras(self) -> list[CameraAgent]:
        return list(self._cameras)

    @property
    def targets(self) -> list[Target]:
        return list(self._targets)

    @property
    def time_step(self) -> int:
        return self.stats.time_step

    def next_id(self) -> int:
        """Engine-scoped counter for generated camera and object names."""
        self._next_id += 1
        return self._next_id

    def get_camera_by_name(self, name: str) -> CameraAgent | None:
        for cam in self._cameras:
            if cam.camera_id == name:
                return cam
        return None

    def get_target(self, features: list[float] | tuple[float, ...]) -> Target | None:
        key = tuple(float(f) for f in features)
        for target in self._targets:
            if target.features == key:
                return target
        return None

    def check_coord_in_range(self, x: float, y: float) -> None:
        if not self.bounds.contains(x, y):
            raise ConfigurationError(
                f"Coordinates ({x}, {y}) outside the field "
                f"[{self.bounds.min_x}, {self.bounds.max_x}] x [{self.bounds.min_y}, {self.bounds.max_y}]"
            )

    # -- Scenario -----------------------------------------------------------------

    def interpret_file(self, scenario: Scenario) -> None:
        """Build the initial world from a validated scenario."""
        self.scenario = scenario
        self.bounds = WorldBounds(scenario.min_x, scenario.max_x, scenario.min_y, scenario.max_y)
        graph = scenario.vision_graph
        self._explicit_graph = graph is not None
        self.static_vision_graph = bool(graph and graph.static)

        pending = []
        for cs in scenario.cameras:
            if self.get_camera_by_name(cs.name) is not None:
                raise ConfigurationError(f"Duplicate camera name '{cs.name}'")
            base = None
            if graph is not None:
                base = graph.strengths.get(cs.name, {n: 1.0 for n in graph.links.get(cs.name, [])})
            cam = self._build_camera(cs.name, cs.x, cs.y, cs.heading, cs.fov, cs.range,
                                     cs.ai_algorithm, cs.bandit, cs.limit, base)
            pending.append((cam, cs.comm, cs.custom_comm))

        if graph is not None:
            for name, others in graph.links.items():
                cam = self.get_camera_by_name(name)
                if cam is None:
                    raise ConfigurationError(f"Vision graph names unknown camera '{name}'")
                for other_name in others:
                    other = self.get_camera_by_name(other_name)
                    if other is None:
                        raise ConfigurationError(f"Vision graph names unknown camera '{other_name}'")
                    self._link(cam, other)
        else:
            for i, cam in enumerate(self._cameras):
                for other in self._cameras[i + 1:]:
                    self._link(cam, other)

        # Policies last: Fix freezes the neighbourhood it sees at construction
        for cam, comm, custom in pending:
            create_policy(comm, cam.ai_node, cam, custom)

        for ts in scenario.objects:
            self.add_object(ts.features, ts.x, ts.y, ts.heading, ts.speed,
                            ts.movement, ts.waypoints, ts.mean, ts.std)

    def save_scenario(self, path: str | Path) -> Path:
        return save_scenario(self, path)

    # -- Cameras --------------------------------------------------------------------

    @staticmethod
    def _link(a: CameraAgent, b: CameraAgent) -> None:
        a.add_neighbour(b)
        b.add_neighbour(a)

    def _make_bandit(self, name: str) -> StrategySelector:
        cfg = self.settings
        return bandit_class(name)(
            len(STRATEGY_TABLE), cfg.epsilon, cfg.alpha, cfg.beta, cfg.gamma,
            cfg.bandit_interval, self.random,
        )

    def apply_params_to_node(self, node: DecisionNode, params: dict[str, Any]) -> None:
        for key, value in params.items():
            if not node.set_param(key, value):
                raise ConfigurationError(f"Parameter {key}={value!r} rejected by {node.kind} node")

    def _build_camera(self, name: str, x: float, y: float, heading_deg: float,
                      angle_deg: float, range: float, ai_algorithm: str,
                      bandit: str | None, limit: int,
                      vision: dict[str, float] | None) -> CameraAgent:
        self.check_coord_in_range(x, y)
        cls = node_class(ai_algorithm)
        solver = self._make_bandit(bandit) if bandit else None
        node = cls(self.random, self.settings,
                   VisionGraph(base=vision, static=self.static_vision_graph),
                   solver, self.registration)
        if self._params:
            self.apply_params_to_node(node, self._params)
        cam = CameraAgent(
            name, x, y, math.radians(heading_deg), math.radians(angle_deg), range, node,
            limit=limit, stats=self.stats, comm_delay=self.settings.comm_delay,
            max_visibility=self.settings.max_visibility,
        )
        self._cameras.append(cam)
        if self.registration is not None:
            self.registration.add_camera(cam)
        return cam

    def add_camera(
        self,
        name: str | None,
        x: float,
        y: float,
        heading_deg: float,
        angle_deg: float,
        range: float,
        comm: int = 0,
        custom_comm: str | None = None,
        ai_algorithm: str = "active",
        bandit: str | None = None,
        limit: int = 0,
        neighbours: list[str] | None = None,
    ) -> CameraAgent:
        """Add a camera mid-run.

        Without an explicit vision graph the camera joins every existing
        camera's neighbourhood; otherwise it links only to *neighbours*.
        """
        if not name:
            name = f"C{self.next_id()}"
        if self.get_camera_by_name(name) is not None:
            raise ConfigurationError(f"Duplicate camera name '{name}'")
        base = {n: 1.0 for n in neighbours} if neighbours else None
        cam = self._build_camera(name, x, y, heading_deg, angle_deg, range,
                                 ai_algorithm, bandit, limit, base)
        if neighbours is not None or self._explicit_graph:
            linked = [self.get_camera_by_name(n) for n in neighbours or []]
        else:
            linked = [c for c in self._cameras if c is not cam]
        for other in linked:
            if other is None:
                raise ConfigurationError(f"Camera '{name}' lists an unknown neighbour")
            self._link(cam, other)
        create_policy(comm, cam.ai_node, cam, custom_comm)
        logger.info(f"Camera {name} added at ({x:.1f}, {y:.1f})")
        return cam

    def remove_camera(self, name: str) -> None:
        """Remove a camera for good.  Its owned targets are searched for again."""
        cam = self.get_camera_by_name(name)
        if cam is None:
            logger.warning(f"remove_camera: no camera named '{name}'")
            return
        orphaned = list(cam.ai_node.owned_objects.values())
        cam.reset_camera()
        self._cameras.remove(cam)
        if self.registration is not None:
            self.registration.remove_camera(name)
        for target in orphaned:
            self._announce(target)
        logger.info(f"Camera {name} removed")

    def remove_camera_index(self, index: int) -> None:
        self.remove_camera(self._cameras[index].camera_id)

    def add_random_camera(self) -> CameraAgent:
        b = self.bounds
        rnd = self.random
        x = b.min_x + rnd.next_double(RandomUse.UNIV) * (b.max_x - b.min_x)
        y = b.min_y + rnd.next_double(RandomUse.UNIV) * (b.max_y - b.min_y)
        heading = rnd.next_int(360, RandomUse.UNIV)
        angle = 30 + rnd.next_int(90, RandomUse.UNIV)
        range = 5 + rnd.next_int(15, RandomUse.UNIV)
        return self.add_camera(None, x, y, heading, angle, range)

    def remove_random_camera(self) -> None:
        if self._cameras:
            self.remove_camera_index(self.random.next_int(len(self._cameras), RandomUse.UNIV))

    def recreate_cameras(self) -> None:
        """Rebuild every camera from its current descriptor with fresh node state.

        Geometry, policy, node kind, bandit, neighbours and outages carry
        over; auction and ownership state does not, so every object is
        searched for again.
        """
        old = list(self._cameras)
        self._cameras = []
        for cam in old:
            node = cam.ai_node
            if self.registration is not None:
                self.registration.remove_camera(cam.camera_id)
            base = node.vision_graph.base
            self._build_camera(
                cam.camera_id, cam.x, cam.y, math.degrees(cam.heading),
                math.degrees(cam.viewing_angle), cam.range, node.kind,
                node.bandit_solver.name if node.bandit_solver is not None else None,
                cam.configured_limit, base,
            )

        for cam in old:
            fresh = self.get_camera_by_name(cam.camera_id)
            for other_name in cam.neighbour_ids:
                self._link(fresh, self.get_camera_by_name(other_name))
            if cam.offline_for != 0:
                fresh.set_offline(cam.offline_for)
        for cam in old:
            comm = cam.ai_node.comm
            fresh = self.get_camera_by_name(cam.camera_id)
            create_policy(comm.index if comm is not None else 0, fresh.ai_node, fresh)

        for target in self._targets:
            self._announce(target)
        logger.info(f"Recreated {len(old)} cameras")

    # -- Objects ----------------------------------------------------------------------

    def _announce(self, target: Target) -> None:
        """Start a network-wide search for *target*."""
        if self.registration is not None:
            self.registration.advertise_globally(target)
            return
        for cam in self._cameras:
            if cam.is_offline:
                continue
            cam.ai_node.receive_message(
                Message("", cam.camera_id, MessageType.START_SEARCH, target)
            )

    def add_object(
        self,
        features: list[float] | tuple[float, ...] | None,
        x: float,
        y: float,
        heading_deg: float = 0.0,
        speed: float = 1.0,
        movement: str = "",
        waypoints: list[tuple[float, float]] | None = None,
        mean: float = 0.0,
        std: float = 1.0,
    ) -> Target:
        if features is None:
            features = [float(self.next_id())]
        if self.get_target(features) is not None:
            raise ConfigurationError(f"An object with features {list(features)} already exists")
        mover = create_movement(
            self.settings.movement or movement, x, y, heading_deg, speed,
            self.random, self.bounds, waypoints=waypoints or None, mean=mean, std=std,
        )
        target = Target(features, mover)
        self._targets.append(target)
        self._announce(target)
        logger.info(f"Object {list(target.features)} added at ({x:.1f}, {y:.1f})")
        return target

    def add_random_object(self) -> Target:
        b = self.bounds
        rnd = self.random
        x = b.min_x + rnd.next_double(RandomUse.UNIV) * (b.max_x - b.min_x)
        y = b.min_y + rnd.next_double(RandomUse.UNIV) * (b.max_y - b.min_y)
        heading = rnd.next_int(360, RandomUse.UNIV)
        speed = 0.1 + rnd.next_double(RandomUse.UNIV)
        return self.add_object(None, x, y, heading, speed)

    def remove_object(self, features: list[float] | tuple[float, ...]) -> None:
        target = self.get_target(features)
        if target is None:
            logger.warning(f"remove_object: no object with features {list(features)}")
            return
        self._targets.remove(target)
        for cam in self._cameras:
            cam.remove_object(target.features)
        if self.registration is not None:
            self.registration.forget(target)
        logger.info(f"Object {list(target.features)} removed")

    def remove_random_object(self) -> None:
        if self._targets:
            index = self.random.next_int(len(self._targets), RandomUse.UNIV)
            self.remove_object(self._targets[index].features)

    # -- Events -------------------------------------------------------------------------

    def _apply_event(self, event: EventSettings) -> None:
        kind, who = event.kind, event.participant
        logger.info(f"t={self.time_step}: {kind.value} {who.value} {event.name or event.features or ''}")

        if who == Participant.REGISTRATION:
            if self.registration is None:
                logger.warning("Registration event ignored: global registration is disabled")
            elif kind == EventKind.ERROR:
                self.registration.set_offline(event.duration)
            elif kind == EventKind.RESTORE:
                self.registration.bring_online()
            return

        if who == Participant.OBJECT:
            if kind == EventKind.ADD and event.target is not None:
                ts = event.target
                self.add_object(ts.features, ts.x, ts.y, ts.heading, ts.speed,
                                ts.movement, ts.waypoints, ts.mean, ts.std)
            elif kind in (EventKind.ERROR, EventKind.REMOVE) and event.features is not None:
                self.remove_object(event.features)
            return

        if kind == EventKind.ADD and event.camera is not None:
            cs = event.camera
            self.add_camera(cs.name, cs.x, cs.y, cs.heading, cs.fov, cs.range, cs.comm,
                            cs.custom_comm, cs.ai_algorithm, cs.bandit, cs.limit)
            return
        if kind == EventKind.REMOVE:
            self.remove_camera(event.name or "")
            return

        cam = self.get_camera_by_name(event.name or "")
        if cam is None:
            logger.warning(f"Event for unknown camera '{event.name}' ignored")
            return
        if kind == EventKind.ERROR:
            cam.set_offline(event.duration)
        elif kind == EventKind.RESTORE:
            cam.bring_online()
        elif kind == EventKind.CHANGE:
            cam.change(event.x, event.y, event.heading, event.fov, event.range)

    # -- Tick ---------------------------------------------------------------------------

    def _inject_failure(self) -> None:
        cfg = self.settings
        roll = self.random.next_int(100, RandomUse.ERROR)
        if cfg.cam_error_rate < 0 or roll > cfg.cam_error_rate or not self._cameras:
            return
        cam = self._cameras[self.random.next_int(len(self._cameras), RandomUse.ERROR)]
        duration = 1 + self.random.next_int(max(1, cfg.max_offline_duration), RandomUse.ERROR)
        cam.set_offline(duration)
        reset = self.random.next_int(100, RandomUse.ERROR) > cfg.reset_rate
        if reset:
            cam.reset_camera()
        logger.info(f"Camera {cam.camera_id} failed for {duration} ticks (reset={reset})")

    def _is_selection_tick(self) -> bool:
        interval = self.settings.select_interval
        return interval < 2 or self.time_step % interval == 0

    def _swap_strategy(self, cam: CameraAgent, choice: int) -> None:
        old = cam.ai_node
        node_cls, policy_cls = strategy_for(choice)
        node = old.clone_state_into(node_cls(self.random, self.settings))
        node.comm = policy_cls(node, cam)
        cam.set_ai_node(node)
        logger.debug(f"{cam.camera_id}: strategy {strategy_index_for(old)} -> {choice}")

    def tick(self) -> None:
        """Advance the simulation by one time step."""
        stats = self.stats

        if self.scenario is not None:
            for event in self.scenario.events_at(self.time_step):
                self._apply_event(event)

        if self.registration is not None:
            self.registration.update()

        for target in self._targets:
            target.update()

        self._inject_failure()

        online = [c for c in self._cameras if not c.is_offline]
        for cam in online:
            for target in self._targets:
                cam.update_visibility(target)
            if cam.num_visible_objects > 0:
                safe_record(stats.add_visible)

        if self._is_selection_tick():
            for cam in online:
                solver = cam.ai_node.bandit_solver
                if solver is None:
                    continue
                prev = strategy_index_for(cam.ai_node)
                choice = solver.select_action()
                if choice != prev:
                    safe_record(stats.set_strat, choice, cam.camera_id)
                    self._swap_strategy(cam, choice)

        for cam in online:
            cam.ai_node.advertise_tracked_objects()

        for cam in online:
            node = cam.ai_node
            node.update_received_delay()
            node.update_auction_duration()
            node.check_if_searched_is_visible()
            cam.forward_messages()

        utilities: dict[str, float] = {}
        for cam in self._cameras:
            node = cam.ai_node
            was_online = not cam.is_offline
            utility = node.utility + node.received_utility - node.paid_utility
            overhead = node.sent_messages
            node.reset_tick_counters()
            cam.update_ai()
            if not was_online:
                continue
            name = cam.camera_id
            utilities[name] = utility
            safe_record(stats.set_communication_overhead, overhead, name)
            if node.bandit_solver is not None:
                safe_record(stats.set_reward, utility, overhead, name)
                node.bandit_solver.set_current_reward(utility, overhead, len(node.owned_objects))
            safe_record(stats.add_confidence, node.total_confidence, name)
            safe_record(stats.add_proportion, node.not_tracked_proportion, name)

        safe_record(stats.add_overlap, network_overlap(self._cameras), "")
        self.compute_utility(utilities)
        safe_record(stats.next_time_step)

    def compute_utility(self, utilities: dict[str, float] | None = None) -> float:
        """Network utility: owned + received - paid over online cameras.

        *utilities* carries values already sampled this tick; cameras
        missing from it are sampled now.
        """
        total = 0.0
        for cam in self._cameras:
            if cam.is_offline:
                continue
            node = cam.ai_node
            if utilities is not None and cam.camera_id in utilities:
                value = utilities[cam.camera_id]
            else:
                value = node.utility + node.received_utility - node.paid_utility
            total += value
            safe_record(self.stats.add_utility, value, cam.camera_id)
        return total

    # -- Audit & output ------------------------------------------------------------------

    def check_consistency(self) -> None:
        """Audit target ownership.

        Raises:
            ConsistencyViolation: a target is neither owned nor searched,
                is owned twice, or is searched by its own owner.
        """
        problems = []
        pending = set(self.registration.pending) if self.registration is not None else set()
        online = [c for c in self._cameras if not c.is_offline]
        for target in self._targets:
            owners = [c for c in online if target.features in c.tracked_objects]
            searched = target in pending or any(
                target in c.ai_node.searched_objects for c in online
            )
            label = list(target.features)
            if not owners and not searched:
                problems.append(f"object {label} is neither tracked nor searched")
            if len(owners) > 1:
                names = ", ".join(c.camera_id for c in owners)
                problems.append(f"object {label} is tracked by several cameras ({names})")
            for owner in owners:
                if target in owner.ai_node.searched_objects:
                    problems.append(f"object {label} is tracked and searched by {owner.camera_id}")
        if problems:
            raise ConsistencyViolation(problems)

    def snapshot(self) -> dict:
        """Render state: cameras and objects as plain dicts."""
        return {
            "time_step": self.time_step,
            "bounds": {
                "min_x": self.bounds.min_x, "max_x": self.bounds.max_x,
                "min_y": self.bounds.min_y, "max_y": self.bounds.max_y,
            },
            "cameras": [c.to_dict() for c in self._cameras],
            "objects": [t.to_dict() for t in self._targets],
        }

    def get_stat_summary(self, spaces: bool = False) -> str:
        return self.stats.get_summary(spaces)

    def _write_bandit_results(self) -> None:
        if self.output is None:
            return
        for cam in self._cameras:
            solver = cam.ai_node.bandit_solver
            if solver is None:
                continue
            path = self.output.with_name(f"{self.output.stem}_bandit_{cam.camera_id}.csv")
            try:
                with path.open("w", newline="", encoding="utf-8") as f:
                    writer = csv.writer(f)
                    writer.writerow(["strategy", "utility", "overhead", "reward"])
                    writer.writerows(solver.get_results())
            except OSError as exc:
                logger.warning(f"Cannot write bandit results {path}: {exc}")

    def close(self) -> None:
        self._write_bandit_results()
        safe_record(self.stats.close)
        logger.info(f"Simulation closed after {self.time_step} steps: {self.get_stat_summary(True)}")
