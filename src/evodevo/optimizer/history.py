from __future__ import annotations

import logging
from dataclasses import astuple, dataclass, field
from typing import Sequence

from evodevo.evolvables.soft_body import SoftBody

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationRecord:
    """
    One row of the fitness history.

    Attributes:
        evaluation: Value of `Evaluator.eval_count` when the row was taken.
        organism: Position of the candidate in the ranked population.
        fitness: Fitness of the candidate.
        diversity: Mean distance of the candidate to the rest of the population.
    """
    evaluation: int
    organism: int
    fitness: float
    diversity: float


@dataclass
class History:
    """
    Row-per-evaluation log of fitness and diversity across generations.

    Formatting and persistence are up to the caller; `rows` gives plain tuples.
    """
    records: list[EvaluationRecord] = field(default_factory=list)

    COLUMNS = ("evaluation", "organism", "fitness", "diversity")

    def __len__(self) -> int:
        return len(self.records)

    def record(
        self,
        evaluation: int,
        population: Sequence[SoftBody],
        diversity: Sequence[float],
    ) -> None:
        """
        Append one row per candidate.

        Args:
            evaluation: Evaluation counter at the time of the snapshot.
            population: Candidates, usually already Pareto-sorted.
            diversity: Per-candidate diversity, aligned with `population`.
        """
        if len(diversity) != len(population):
            raise ValueError(
                f"Got {len(diversity)} diversity values for {len(population)} candidates."
            )
        for organism, (body, div) in enumerate(zip(population, diversity)):
            self.records.append(EvaluationRecord(evaluation, organism, float(body.fitness), float(div)))
        logger.debug(f"Recorded {len(population)} rows at evaluation {evaluation}.")

    def rows(self) -> list[tuple[int, int, float, float]]:
        return [astuple(r) for r in self.records]

    def best(self) -> list[EvaluationRecord]:
        """Best row of every recorded evaluation, in recording order."""
        best: dict[int, EvaluationRecord] = {}
        for r in self.records:
            if r.evaluation not in best or r.fitness > best[r.evaluation].fitness:
                best[r.evaluation] = r
        return list(best.values())
