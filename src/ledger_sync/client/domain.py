"""
Domain client for the staking contract.

Translates domain operations (stake, withdraw, post a message, read balances)
into the ledger transport's primitives. The client owns no state beyond its
transport reference: there is no cache and no retry. Polling retries belong to
the sync engine; writes are fire-once and surface failures to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from ledger_sync.events import EventKind, LogRecord
from ledger_sync.types import (
    FrozenModel,
    LedgerSyncError,
    TransportError,
    format_ether,
    parse_ether,
)

from .transport import ACCOUNT_BALANCE, LedgerTransport, Receipt, ScalarResult, SignerHandle

logger = logging.getLogger(__name__)

VALIDITY_PROBE = "totalStaked"
"""Harmless view used to check that an address hosts the staking contract."""

APY_SCALE = 100
"""The contract reports APY in hundredths of a percent."""


def _as_int(result: ScalarResult) -> int:
    if isinstance(result, tuple):
        raise TransportError(f"Expected a single value, got {result!r}")
    return int(result)


def _render_ether(value: ScalarResult) -> str:
    return format_ether(_as_int(value))


def _render_apy(value: ScalarResult) -> str:
    return str(_as_int(value) / APY_SCALE)


SCALAR_RENDERERS: dict[str, Callable[[ScalarResult], str]] = {
    "totalStaked": _render_ether,
    "contractBalance": _render_ether,
    "getCurrentAPY": _render_apy,
}
"""Display conversion per scalar; anything else renders with `str()`."""


def render_scalar(name: str, value: ScalarResult) -> str:
    """Render a raw scalar for a snapshot."""
    return SCALAR_RENDERERS.get(name, str)(value)


class StakeInfo(FrozenModel):
    """A participant's stake, rendered for display."""

    amount: str
    """Staked amount in ether."""

    reward: str
    """Pending reward in ether."""

    start_time: int
    """Unix timestamp when staking began (0 if never staked)."""


class ValidatorStats(FrozenModel):
    """Per-validator statistics reported by the contract."""

    amount: str
    """Staked amount in ether."""

    reward: str
    """Accrued reward in ether."""

    slash_count: int
    """Times the validator was slashed."""

    blocks_proposed: int
    """Blocks the validator proposed."""

    missed_attestations: int
    """Attestations the validator missed."""

    unbonding_time: int
    """Seconds left in the unbonding period."""

    min_stake_duration: int
    """Seconds until the minimum staking period elapses."""

    has_attested_this_epoch: bool
    """Whether the validator already attested in the current epoch."""

    withdrawal_requested: bool
    """Whether a withdrawal request is pending."""


@dataclass(frozen=True, slots=True)
class DomainClient:
    """
    Stateless adapter from staking-contract operations to ledger primitives.

    Safe to share between the sync engine and direct callers.
    """

    transport: LedgerTransport
    """Transport every call goes through."""

    # -------------------------------------------------------------------------
    # Validity
    # -------------------------------------------------------------------------

    async def is_valid(self) -> bool:
        """
        Check whether the configured address behaves like the staking contract.

        Performs one harmless read. Never raises for ledger errors; a failed
        read means the address cannot be used.
        """
        try:
            await self.transport.get_scalar(VALIDITY_PROBE)
        except LedgerSyncError as exc:
            logger.debug("Validity probe failed: %s", exc)
            return False
        return True

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_height(self) -> int:
        """Current ledger height."""
        return await self.transport.get_height()

    async def get_total_staked(self) -> int:
        """Total stake held by the contract, in wei."""
        return _as_int(await self.transport.get_scalar("totalStaked"))

    async def get_stake(self, address: str) -> int:
        """Stake of one account, in wei."""
        return _as_int(await self.transport.get_scalar("stakes", address))

    async def get_reward(self, address: str) -> int:
        """Pending reward of one account, in wei."""
        return _as_int(await self.transport.get_scalar("calculateReward", address))

    async def get_staking_start_time(self, address: str) -> int:
        """Unix timestamp when the account started staking."""
        return _as_int(await self.transport.get_scalar("stakingStartTime", address))

    async def get_balance(self, address: str) -> int:
        """Native balance of any account, in wei."""
        return _as_int(await self.transport.get_scalar(ACCOUNT_BALANCE, address))

    async def get_stake_info(self, address: str) -> StakeInfo:
        """Stake, reward, and start time of one account, read concurrently."""
        stake, reward, start_time = await asyncio.gather(
            self.get_stake(address),
            self.get_reward(address),
            self.get_staking_start_time(address),
        )
        return StakeInfo(
            amount=format_ether(stake),
            reward=format_ether(reward),
            start_time=start_time,
        )

    async def get_validator_stats(self, address: str) -> ValidatorStats:
        """Detailed validator statistics, read concurrently."""
        stats, attested, min_duration, requested_at = await asyncio.gather(
            self.transport.get_scalar("getValidatorStats", address),
            self.transport.get_scalar("hasAttestedThisEpoch", address),
            self.transport.get_scalar("getMinStakeDurationRemaining", address),
            self.transport.get_scalar("withdrawalRequestTime", address),
        )

        # getValidatorStats returns
        # (stakeAmount, rewardAmount, slashes, blocks, attestations, unbondingTime).
        if not isinstance(stats, tuple) or len(stats) != 6:
            raise TransportError(f"Unexpected result shape: {stats!r}", method="getValidatorStats")
        stake, reward, slashes, blocks, missed, unbonding = stats

        return ValidatorStats(
            amount=format_ether(int(stake)),
            reward=format_ether(int(reward)),
            slash_count=int(slashes),
            blocks_proposed=int(blocks),
            missed_attestations=int(missed),
            unbonding_time=int(unbonding),
            min_stake_duration=_as_int(min_duration),
            has_attested_this_epoch=bool(attested),
            withdrawal_requested=_as_int(requested_at) > 0,
        )

    async def get_network_stats(self, names: Iterable[str]) -> dict[str, str]:
        """
        Read aggregate scalars concurrently and render them for display.

        Args:
            names: Scalar names to read.

        Returns:
            Rendered values keyed by name.
        """
        names = list(names)
        values = await asyncio.gather(*(self.transport.get_scalar(name) for name in names))
        return {name: render_scalar(name, value) for name, value in zip(names, values, strict=True)}

    async def get_logs(self, kind: EventKind, from_block: int, to_block: int) -> list[LogRecord]:
        """Records of one kind within `[from_block, to_block]` inclusive."""
        if from_block > to_block:
            return []
        return await self.transport.get_log_range(kind, from_block, to_block)

    async def get_participants(self, from_block: int = 0) -> list[str]:
        """
        Distinct accounts that staked or posted a message since `from_block`.

        Returns:
            Addresses in order of first appearance.
        """
        height = await self.get_height()
        stakes, messages = await asyncio.gather(
            self.get_logs(EventKind.STAKED, from_block, height),
            self.get_logs(EventKind.NEW_MESSAGE, from_block, height),
        )
        return list(dict.fromkeys(record.actor for record in [*stakes, *messages]))

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def stake(self, signer: SignerHandle, amount_eth: str) -> Receipt:
        """
        Stake ether to become a validator.

        Args:
            signer: Account that stakes.
            amount_eth: Amount in ether (e.g. "1.0").

        Returns:
            The confirmed receipt.
        """
        return await self.transport.send_write("stake", [], signer, value=parse_ether(amount_eth))

    async def withdraw(self, signer: SignerHandle) -> Receipt:
        """Withdraw stake and rewards."""
        return await self.transport.send_write("withdraw", [], signer)

    async def send_message(self, signer: SignerHandle, text: str) -> Receipt:
        """Post a chat message."""
        return await self.transport.send_write("sendMessage", [text], signer)
