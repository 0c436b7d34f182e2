#!/usr/bin/env python3
"""Run a camera-network scenario headless and print the statistics summary.

Usage:
    python run_simulation.py scenarios/two_cameras.json --time 200 --seed 3
    python run_simulation.py scenarios/two_cameras.json --comm 2 --algo passive -o results/run.csv

Exit status 1 on any configuration problem (bad scenario, unknown
strategy identifiers, invalid parameter file).
"""

import argparse
import sys

from loguru import logger

from camnet.config import settings
from camnet.simulation import ConfigurationError, SimulationEngine, load_scenario


def _apply_overrides(scenario, args):
    """Force a policy / node kind / static vision graph onto every camera."""
    cameras = []
    for cam in scenario.cameras:
        update = {}
        if args.comm is not None:
            update["comm"] = args.comm
            update["custom_comm"] = args.custom_comm
        if args.algo is not None:
            update["ai_algorithm"] = args.algo
        if args.bandit is not None:
            update["bandit"] = args.bandit
        cameras.append(cam.model_copy(update=update))
    update = {"cameras": cameras}
    if args.static_vg and scenario.vision_graph is not None:
        update["vision_graph"] = scenario.vision_graph.model_copy(update={"static": True})
    return scenario.model_copy(update=update)


def main():
    parser = argparse.ArgumentParser(description="Camera network simulation")
    parser.add_argument("scenario", help="Scenario JSON file")
    parser.add_argument("--seed", type=int, default=0, help="Master random seed")
    parser.add_argument("--time", type=int, default=100, help="Number of ticks to run")
    parser.add_argument("-o", "--output", type=str, default=None, help="Statistics CSV path")
    parser.add_argument("--global", dest="use_global", action="store_true",
                        help="Announce new objects through the global registration")
    parser.add_argument("--comm", type=int, default=None,
                        help="Policy for every camera: 0 broadcast, 1 smooth, 2 step, 3 fix, 4 custom")
    parser.add_argument("--custom-comm", type=str, default=None, help="Policy name when --comm 4")
    parser.add_argument("--algo", type=str, default=None, help="Decision node for every camera (active/passive)")
    parser.add_argument("--bandit", type=str, default=None, help="Bandit solver for every camera")
    parser.add_argument("--static-vg", action="store_true", help="Freeze the scenario's vision graph")
    parser.add_argument("--params", type=str, default=None, help="JSON file of decision-node parameters")
    parser.add_argument("--save", type=str, default=None, help="Write a scenario snapshot at the end")
    parser.add_argument("--log-level", type=str, default=settings.log_level, help="Loguru sink level")
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level=args.log_level.upper())

    try:
        scenario = _apply_overrides(load_scenario(args.scenario), args)
        engine = SimulationEngine(
            seed=args.seed,
            output=args.output,
            scenario=scenario,
            use_global=args.use_global,
            param_file=args.params,
        )
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    for _ in range(args.time):
        engine.tick()

    if args.save:
        path = engine.save_scenario(args.save)
        logger.info(f"Scenario snapshot written to {path}")
    engine.close()

    print(engine.stats.get_summary_desc(spaces=True))
    print(engine.get_stat_summary(spaces=True))


if __name__ == "__main__":
    main()
