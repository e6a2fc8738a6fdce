"""
Racing loop of the reference driver.

A deliberately plain iterated race: each iteration samples configurations
(fresh ones plus neighbours of the current elites), evaluates them block by
block (one block = instance × seed), and after `first_test` blocks drops
configurations whose mean rank is worse than the best one, gated by a
Friedman test when at least three configurations are alive. It exists so
the bridge can be exercised without R; it is not a substitute for irace.

The race works entirely in the wire domain: categorical values are labels.
"""
from __future__ import annotations

import math
import warnings
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import friedmanchisquare, rankdata

from ..param_space import Bool, Categorical, Integer, ParamSpace, Real

EvaluateFn = Callable[[List[Dict[str, Any]]], Dict[str, Optional[float]]]
LogFn = Callable[[str, str], None]


@dataclass
class RaceSettings:
    """Driver-side view of the scenario sent in the start message."""

    max_experiments: int
    seed: Optional[int] = None
    deterministic: bool = False
    elitist: bool = True
    first_test: int = 5
    n_configurations: Optional[int] = None
    n_jobs: int = 1
    initial_configurations: List[Dict[str, Any]] = field(default_factory=list)
    alpha: float = 0.05

    @classmethod
    def from_wire(cls, scenario: Mapping[str, Any]) -> "RaceSettings":
        return cls(
            max_experiments=int(scenario["max_experiments"]),
            seed=None if scenario.get("seed") is None else int(scenario["seed"]),
            deterministic=bool(scenario.get("deterministic", False)),
            elitist=bool(scenario.get("elitist", True)),
            first_test=max(1, int(scenario.get("first_test") or 5)),
            n_configurations=None if scenario.get("n_configurations") is None else int(scenario["n_configurations"]),
            n_jobs=max(1, int(scenario.get("n_jobs") or 1)),
            initial_configurations=[dict(c) for c in scenario.get("initial_configurations") or []],
        )


@dataclass
class ConfigState:
    """
    Internal structure to keep track of a single configuration during racing.
    """

    config_id: int
    config: Dict[str, Any]
    alive: bool = True
    # Costs keyed by block index; failed evaluations are stored as +inf.
    scores: Dict[int, float] = field(default_factory=dict)

    def mean_cost(self, n_blocks: int) -> float:
        values = [self.scores[b] for b in range(n_blocks) if b in self.scores]
        if not values:
            return math.inf
        return float(np.mean(values))


def make_neighbor_config(base_config: Dict[str, Any], space: ParamSpace, rng: np.random.Generator) -> Dict[str, Any]:
    """
    Create a new configuration by applying small perturbations to a base configuration.
    """
    cfg: Dict[str, Any] = dict(base_config)

    for name in space:
        spec = space.get_raw(name)
        if name not in base_config:
            cfg[name] = spec.sample(rng)
            continue

        current_value = base_config[name]

        if isinstance(spec, (Real, Integer)):
            # Perturb in unit space so log-scaled parameters move proportionally.
            u = spec.to_unit(current_value) + float(rng.normal(0.0, 0.1))
            cfg[name] = spec.from_unit(u)
        elif isinstance(spec, Categorical):
            labels = list(spec.labels)
            keep_prob = 0.7
            if current_value in labels and rng.random() < keep_prob:
                cfg[name] = current_value
            else:
                available = [c for c in labels if c != current_value] or labels
                cfg[name] = available[int(rng.integers(0, len(available)))]
        elif isinstance(spec, Bool):
            cfg[name] = current_value if rng.random() < 0.7 else not current_value

    return cfg


class ReferenceRace:
    """
    Iterated race over a parameter space.

    `evaluate` receives a batch of experiment records and must return the
    cost of each one keyed by experiment id (None for a failed run).
    """

    def __init__(
        self,
        space: ParamSpace,
        n_instances: int,
        settings: RaceSettings,
        evaluate: EvaluateFn,
        log: Optional[LogFn] = None,
        instance_ids: Optional[Sequence[str]] = None,
    ) -> None:
        if n_instances < 1:
            raise ValueError("At least one instance is required")
        self.space = space
        self.n_instances = n_instances
        self.instance_ids = list(instance_ids) if instance_ids is not None else [str(i) for i in range(n_instances)]
        self.settings = settings
        self.evaluate = evaluate
        self.log = log or (lambda level, message: None)
        self.rng = np.random.default_rng(settings.seed)

        # irace's rule of thumb for the number of iterations and survivors.
        self.n_iterations = max(1, int(math.floor(2 + math.log2(max(1, len(space))))))
        self.n_survivors = self.n_iterations

        self.blocks: List[Tuple[int, int]] = []
        self._round_order: List[int] = []
        self.n_experiments = 0
        self.stage = 0
        self.eliminated: Dict[str, int] = {}
        self._next_config_id = 1
        self._next_experiment_id = 1

    # --- blocks -------------------------------------------------------------------

    def _block(self, index: int) -> Optional[Tuple[int, int]]:
        """Return the (instance, seed) of block `index`, extending the schedule lazily."""
        while len(self.blocks) <= index:
            if self.settings.deterministic and len(self.blocks) >= self.n_instances:
                return None
            if not self._round_order:
                order = list(range(self.n_instances))
                self.rng.shuffle(order)
                self._round_order = order
            inst_idx = self._round_order.pop(0)
            seed = int(self.rng.integers(0, 2**31 - 1))
            self.blocks.append((inst_idx, seed))
        return self.blocks[index]

    # --- population ---------------------------------------------------------------

    def _new_state(self, config: Dict[str, Any]) -> ConfigState:
        state = ConfigState(config_id=self._next_config_id, config=config)
        self._next_config_id += 1
        return state

    def _complete(self, partial: Mapping[str, Any]) -> Dict[str, Any]:
        sampled = self.space.sample(self.rng)
        return {name: partial.get(name, sampled[name]) for name in self.space}

    def _sample_population(self, n_new: int, elites: Sequence[ConfigState], first: bool) -> List[ConfigState]:
        states: List[ConfigState] = []
        if first:
            for partial in self.settings.initial_configurations[:n_new]:
                states.append(self._new_state(self._complete(partial)))
        while len(states) < n_new:
            if elites and len(states) % 2 == 0:
                base = elites[int(self.rng.integers(0, len(elites)))]
                states.append(self._new_state(make_neighbor_config(base.config, self.space, self.rng)))
            else:
                states.append(self._new_state(self.space.sample(self.rng)))
        return states

    def _population_size(self, budget: int, iteration: int) -> int:
        if self.settings.n_configurations is not None:
            return self.settings.n_configurations
        return max(2, budget // (self.settings.first_test + min(5, iteration)))

    # --- racing -------------------------------------------------------------------

    def run(self) -> Tuple[List[ConfigState], Dict[str, Any]]:
        """Race until the experiment budget is spent; return elites (best first) and diagnostics."""
        elites: List[ConfigState] = []
        iteration = 0

        while True:
            remaining = self.settings.max_experiments - self.n_experiments
            if remaining <= 0:
                break
            iterations_left = max(1, self.n_iterations - iteration)
            budget = remaining if iterations_left == 1 else max(1, remaining // iterations_left)

            if self.settings.elitist:
                carried = elites
            else:
                carried = [ConfigState(config_id=e.config_id, config=e.config) for e in elites]
            for state in carried:
                state.alive = True
            unscored = sum(1 for s in carried if 0 not in s.scores)
            n_new = max(1, self._population_size(budget, iteration) - len(carried))
            n_new = min(n_new, budget - unscored)
            if n_new < 1:
                break

            population = list(carried) + self._sample_population(n_new, elites, first=iteration == 0)
            self.log("info", f"iteration {iteration + 1}: {len(population)} configurations, budget {budget}")
            spent = self._race(population, budget)
            if spent == 0:
                break
            elites = self._select_elites(population)
            iteration += 1

        if not elites:
            raise RuntimeError("Budget too small to evaluate a single configuration")

        n_blocks = min(len(s.scores) for s in elites)
        diagnostics = {
            "eliminated": dict(self.eliminated),
            "n_experiments": self.n_experiments,
            "n_iterations": iteration,
            "n_configurations": self._next_config_id - 1,
            "n_blocks": n_blocks,
        }
        return elites, diagnostics

    def _race(self, population: List[ConfigState], budget: int) -> int:
        spent = 0
        block_index = 0
        while True:
            alive = [s for s in population if s.alive]
            if len(alive) <= 1 and block_index > 0:
                break
            block = self._block(block_index)
            if block is None:
                break
            batch = [s for s in alive if block_index not in s.scores]
            if len(batch) > budget - spent:
                break
            if batch:
                self._evaluate_block(batch, block_index, block)
                spent += len(batch)
            self.stage += 1
            block_index += 1
            if block_index >= self.settings.first_test:
                self._eliminate(alive, block_index)
        return spent

    def _evaluate_block(self, batch: List[ConfigState], block_index: int, block: Tuple[int, int]) -> None:
        inst_idx, seed = block
        experiments: List[Dict[str, Any]] = []
        for state in batch:
            experiments.append(
                {
                    "id": str(self._next_experiment_id),
                    "configuration_id": str(state.config_id),
                    "configuration": dict(state.config),
                    "instance": inst_idx,
                    "instance_id": self.instance_ids[inst_idx],
                    "seed": seed,
                }
            )
            self._next_experiment_id += 1
        costs = self.evaluate(experiments)
        for state, experiment in zip(batch, experiments):
            cost = costs.get(experiment["id"])
            state.scores[block_index] = math.inf if cost is None or math.isnan(cost) else float(cost)
        self.n_experiments += len(batch)

    def _eliminate(self, alive: List[ConfigState], n_blocks: int) -> bool:
        if len(alive) <= 1:
            return False
        scores = np.array([[s.scores[b] for b in range(n_blocks)] for s in alive], dtype=float)
        mean_ranks = np.mean(np.vstack([rankdata(scores[:, j]) for j in range(n_blocks)]), axis=0)

        if len(alive) >= 3:
            # If the Friedman test cannot tell the configurations apart, keep all of them.
            with warnings.catch_warnings(), np.errstate(all="ignore"):
                warnings.simplefilter("ignore")
                try:
                    _, p_value = friedmanchisquare(*[scores[i, :] for i in range(scores.shape[0])])
                except (ValueError, ZeroDivisionError):
                    return False
            if not (p_value <= self.settings.alpha):
                return False

        order = np.argsort(mean_ranks, kind="stable")
        best_rank = mean_ranks[order[0]]
        target_keep = max(1, int(math.ceil(len(alive) / 2.0)))
        eliminated_any = False
        for row in order[target_keep:]:
            if mean_ranks[row] > best_rank:
                alive[row].alive = False
                self.eliminated[str(alive[row].config_id)] = self.stage
                eliminated_any = True
        return eliminated_any

    def _select_elites(self, population: List[ConfigState]) -> List[ConfigState]:
        alive = [s for s in population if s.alive and s.scores]
        if not alive:
            return []
        n_blocks = min(len(s.scores) for s in alive)
        ranked = sorted(alive, key=lambda s: (s.mean_cost(n_blocks), s.config_id))
        return ranked[: self.n_survivors]


__all__ = ["RaceSettings", "ConfigState", "ReferenceRace", "make_neighbor_config"]
