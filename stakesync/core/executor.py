"""Ledger executor contract.

The executor is the capability that actually performs a stake, unstake or
claim against the remote ledger. The sync core only calls it and interprets
the result; timeouts and idempotency are the executor's business.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol

logger = logging.getLogger("stakesync.executor")


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one executor call."""

    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> "ExecutionResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> "ExecutionResult":
        return cls(success=False, error=error)


class LedgerExecutor(Protocol):
    """One method per operation kind.

    Each method may be a plain function or a coroutine function; the
    orchestrator awaits the result when it is awaitable. Raising is treated
    the same as returning a failed result with str(exc) as the error.
    """

    def stake(
        self, amount: str, address: str
    ) -> ExecutionResult | Awaitable[ExecutionResult]: ...

    def unstake(
        self, amount: str, address: str
    ) -> ExecutionResult | Awaitable[ExecutionResult]: ...

    def claim(self, address: str) -> ExecutionResult | Awaitable[ExecutionResult]: ...


class SimulatedLedgerExecutor:
    """Executor that fakes network latency and random failures.

    Used by the demo app and for exercising the sync loop without a ledger.

    Args:
        stake_success_rate: Probability a stake succeeds (default 0.90).
        unstake_success_rate: Probability an unstake succeeds (default 0.85).
        claim_success_rate: Probability a claim succeeds (default 0.95).
        latency: Seconds to sleep per call, or a (stake/unstake, claim) pair.
        rng: Random source; pass a seeded random.Random for reproducible runs.
    """

    def __init__(
        self,
        stake_success_rate: float = 0.90,
        unstake_success_rate: float = 0.85,
        claim_success_rate: float = 0.95,
        latency: float | tuple[float, float] = (1.0, 0.8),
        rng: random.Random | None = None,
    ) -> None:
        for name, rate in (
            ("stake_success_rate", stake_success_rate),
            ("unstake_success_rate", unstake_success_rate),
            ("claim_success_rate", claim_success_rate),
        ):
            if not 0.0 <= rate <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {rate}")

        self._rates = {
            "stake": stake_success_rate,
            "unstake": unstake_success_rate,
            "claim": claim_success_rate,
        }
        if isinstance(latency, tuple):
            self._latency = {"stake": latency[0], "unstake": latency[0], "claim": latency[1]}
        else:
            self._latency = {"stake": latency, "unstake": latency, "claim": latency}
        self._rng = rng or random.Random()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def _simulate(self, kind: str, **params: Any) -> ExecutionResult:
        self.calls.append((kind, params))
        logger.info(f"Executing {kind} transaction", extra={"kind": kind, **params})

        await asyncio.sleep(self._latency[kind])

        if self._rng.random() < self._rates[kind]:
            return ExecutionResult.ok()
        return ExecutionResult.failed(f"{kind.capitalize()} transaction failed")

    async def stake(self, amount: str, address: str) -> ExecutionResult:
        return await self._simulate("stake", amount=amount, address=address)

    async def unstake(self, amount: str, address: str) -> ExecutionResult:
        return await self._simulate("unstake", amount=amount, address=address)

    async def claim(self, address: str) -> ExecutionResult:
        return await self._simulate("claim", address=address)
