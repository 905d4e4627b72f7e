"""Command-line interface."""
from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

import numpy as np

from evodevo.config import Config
from evodevo.dev import timer
from evodevo.evolvables.nn_robot import NNRobot, build_population
from evodevo.logging_config import setup_logging
from evodevo.optimizer.evaluator import Evaluator
from evodevo.optimizer.history import History
from evodevo.sim.solvers.solver import Simulator

logger = logging.getLogger("evodevo.cli")

# small enough to finish in seconds
DEMO_OPTIONS = {
    "POP_SIZE": "8",
    "NUM_MASSES": "125",
    "SPRINGS_PER_MASS": "8",
    "BASE_TIME": "0.5",
    "EVAL_TIME": "2.0",
    "DEVO_TIME": "0.5",
    "DEVO_CYCLES": "1",
    "REPLACE_AMOUNT": "5",
}


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="evodevo", description="Evolve soft-body walkers.")
    parser.add_argument("--generations", type=int, default=3, help="Number of evaluate/rank rounds.")
    parser.add_argument("--seed", type=int, default=0, help="Seed of the random number generator.")
    parser.add_argument(
        "--set", metavar="KEY=VALUE", action="append", default=[],
        help="Override an option, e.g. --set POP_SIZE=16. May be repeated.",
    )
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", default=None)
    return parser.parse_args(argv)


def _options(pairs: Sequence[str]) -> dict[str, str]:
    options = dict(DEMO_OPTIONS)
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise SystemExit(f"Expected KEY=VALUE, got '{pair}'.")
        options[key.strip().upper()] = value
    return options


@timer
def run(config: Config, generations: int, seed: int) -> History:
    """
    Evaluate, rank and refill a population for a number of generations.

    The worse half of every generation is replaced by random robots; real
    genetic operators plug in at that point.
    """
    rng = np.random.default_rng(seed)
    nn = config.nnrobot

    def new_robot() -> NNRobot:
        return NNRobot(
            num_masses=nn.num_masses,
            springs_per_mass=nn.springs_per_mass,
            hidden_layer_sizes=nn.hidden_layer_sizes,
            rng=rng,
            build_topology=False,
        )

    population = [new_robot() for _ in range(config.evaluator.pop_size)]
    build_population(population)
    evaluator = Evaluator(config.evaluator, Simulator(config.simulator))
    evaluator.initialize()
    history = History()

    try:
        for generation in range(generations):
            evaluator.batch_evaluate(population)
            Evaluator.pareto_sort(population)
            diversity = Evaluator.find_diversity(population)
            history.record(Evaluator.eval_count, population, diversity)

            best = population[0]
            logger.info(
                f"Generation {generation}: best fitness {best.fitness:.4f} "
                f"({best.num_masses} masses, {best.num_springs} springs), "
                f"mean diversity {float(np.mean(diversity)):.4f}"
            )

            keep = max(len(population) // 2, 1)
            newcomers = [new_robot() for _ in range(len(population) - keep)]
            build_population(newcomers)
            population[keep:] = newcomers
    finally:
        evaluator.teardown()

    return history


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(level=getattr(logging, args.log_level), log_file=args.log_file)

    config = Config.from_mapping(_options(args.set))
    history = run(config, args.generations, args.seed)

    for record in history.best():
        logger.info(f"Evaluation {record.evaluation}: best fitness {record.fitness:.4f}")


if __name__ == "__main__":
    main()
