"""Strategy selectors -- multi-armed bandits over the strategy table.

A selector picks an arm (a strategy index) and learns from the reward the
engine reports for the ticks the arm was active:

  reward = alpha * utility - beta * overhead + gamma * extra

An arm is held for ``interval`` calls to ``select_action()``; the rewards
collected meanwhile are averaged into that arm's estimate when the next
choice is made.  All draws come from the UNIV random stream.
"""

from __future__ import annotations

import numpy as np

from .random_streams import RandomStreamSet, RandomUse


class StrategySelector:
    """Base bandit: bookkeeping of arm estimates and the reward series."""

    name = "abstract"

    def __init__(
        self,
        n_arms: int,
        epsilon: float,
        alpha: float,
        beta: float,
        gamma: float,
        interval: int,
        random: RandomStreamSet,
    ) -> None:
        if n_arms <= 0:
            raise ValueError(f"n_arms must be positive, got {n_arms}")
        self.n_arms = n_arms
        self.epsilon = epsilon
        self.alpha = alpha
        self.beta = beta
        self.gamma = gamma
        self.interval = max(1, interval)
        self._random = random

        self._estimates = np.zeros(n_arms)
        self._pulls = np.zeros(n_arms, dtype=int)
        self._current = 0
        self._calls = 0
        self._pending: list[float] = []
        self._results: list[list[float]] = []

    @property
    def current_action(self) -> int:
        return self._current

    @property
    def estimates(self) -> list[float]:
        return self._estimates.tolist()

    def select_action(self) -> int:
        """Return the arm to play; re-choose every ``interval`` calls."""
        if self._calls % self.interval == 0:
            self._credit_pending()
            self._current = self._choose()
        self._calls += 1
        return self._current

    def _choose(self) -> int:
        raise NotImplementedError

    def _credit_pending(self) -> None:
        if not self._pending:
            return
        arm = self._current
        reward = float(np.mean(self._pending))
        self._pulls[arm] += 1
        # Incremental mean over the arm's plays
        self._estimates[arm] += (reward - self._estimates[arm]) / self._pulls[arm]
        self._pending = []

    def reward(self, utility: float, overhead: float, extra: float | None = None) -> float:
        value = self.alpha * utility - self.beta * overhead
        if extra is not None:
            value += self.gamma * extra
        return value

    def set_current_reward(self, utility: float, overhead: float, extra: float | None = None) -> None:
        value = self.reward(utility, overhead, extra)
        self._pending.append(value)
        self._results.append([float(self._current), utility, overhead, value])

    def get_results(self) -> list[list[float]]:
        """One row per reported reward: [arm, utility, overhead, reward]."""
        return [list(row) for row in self._results]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(arms={self.n_arms}, current={self._current})"


class EpsilonGreedy(StrategySelector):
    """Explore a uniformly random arm with probability epsilon, else exploit."""

    name = "epsilon_greedy"

    def _choose(self) -> int:
        if self._random.next_double(RandomUse.UNIV) < self.epsilon:
            return self._random.next_int(self.n_arms, RandomUse.UNIV)
        return int(np.argmax(self._estimates))


class Softmax(StrategySelector):
    """Boltzmann exploration; epsilon is the temperature."""

    name = "softmax"

    def probabilities(self) -> np.ndarray:
        temperature = max(self.epsilon, 1e-6)
        scaled = self._estimates / temperature
        weights = np.exp(scaled - scaled.max())
        return weights / weights.sum()

    def _choose(self) -> int:
        r = self._random.next_double(RandomUse.UNIV)
        cumulative = np.cumsum(self.probabilities())
        return int(min(np.searchsorted(cumulative, r, side="right"), self.n_arms - 1))


BANDITS: dict[str, type[StrategySelector]] = {
    EpsilonGreedy.name: EpsilonGreedy,
    Softmax.name: Softmax,
}
