"""Synthetic source.

Produces an estimate without any network access: the mean of several
independently perturbed values around a constant. Used for local clusters
and tests.
"""

import logging
import random

from .base import PriceSource, register_source

logger = logging.getLogger(__name__)


@register_source
class SyntheticSource(PriceSource):
    """Mean of ``samples`` uniform draws in ``[center - spread, center + spread]``.

    With the defaults every estimate lies in 999..1001.
    """

    name = "synthetic"

    DEFAULT_CENTER = 1000.0
    DEFAULT_SPREAD = 1.0
    DEFAULT_SAMPLES = 3

    def __init__(
        self,
        pair: str = "btc/usd",
        timeout: float | None = None,
        center: float = DEFAULT_CENTER,
        spread: float = DEFAULT_SPREAD,
        samples: int = DEFAULT_SAMPLES,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(pair=pair, timeout=timeout)
        if samples < 1:
            raise ValueError("samples must be at least 1")
        if spread < 0 or center - spread <= 0:
            raise ValueError("center - spread must be positive")
        self.center = center
        self.spread = spread
        self.samples = samples
        self._rng = rng or random.Random()

    async def get_local_estimate(self) -> float:
        """Average the perturbed samples.

        :returns: Synthetic estimate.
        """
        low = self.center - self.spread
        draws = [low + self._rng.random() * 2 * self.spread for _ in range(self.samples)]
        estimate = sum(draws) / len(draws)
        logger.debug(f"[synthetic] {self.pair} estimate {estimate:.6f}")
        return estimate
