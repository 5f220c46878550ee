"""Bounded exponential backoff and a supervisor for long-running loops."""

import asyncio
import random
from collections.abc import Awaitable, Callable

import structlog

from app.core.exceptions import ConnectionLostError

logger = structlog.get_logger()


class ExponentialBackoff:
    """Delay sequence ``initial * factor**n`` capped at ``maximum``, with jitter.

    ``jitter`` is the fraction of the delay that is randomized, so 0.1 yields
    delays within +/-10% of the nominal value (never above ``maximum``).
    """

    def __init__(
        self,
        initial: float = 5.0,
        maximum: float = 60.0,
        factor: float = 2.0,
        jitter: float = 0.1,
        rng: random.Random | None = None,
    ) -> None:
        if initial <= 0 or maximum < initial:
            raise ValueError("Backoff needs 0 < initial <= maximum")
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self.jitter = jitter
        self._rng = rng or random.Random()
        self.attempts = 0

    def nominal(self) -> float:
        """Delay for the current attempt before jitter."""
        return min(self.initial * self.factor**self.attempts, self.maximum)

    def next_delay(self) -> float:
        delay = self.nominal()
        self.attempts += 1
        if self.jitter:
            spread = delay * self.jitter
            delay += self._rng.uniform(-spread, spread)
        return max(0.0, min(delay, self.maximum))

    def reset(self) -> None:
        self.attempts = 0


async def supervise(
    name: str,
    run: Callable[[ExponentialBackoff], Awaitable[None]],
    backoff: ExponentialBackoff,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Run ``run`` until it returns, restarting it after failures with backoff.

    ``run`` receives the backoff so it can ``reset()`` once it has
    connected. Cancellation stops the loop.
    """
    while True:
        try:
            await run(backoff)
            logger.info("Supervised loop finished", loop=name)
            return
        except ConnectionLostError as e:
            logger.warning("Connection lost", loop=name, error=str(e))
        except (OSError, TimeoutError) as e:
            logger.warning("Transport error", loop=name, error=str(e))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Supervised loop crashed", loop=name)

        delay = backoff.next_delay()
        logger.warning(
            "Reconnecting", loop=name, attempt=backoff.attempts, delay=round(delay, 2)
        )
        await sleep(delay)
