"""
Launch bundle construction.

Builds the ordered launch bundle: token approval and liquidity from the
executing wallet, funding transfers from the sponsor wallet, then one buy
swap per sniper wallet.
"""

import asyncio
import time
from typing import List, Optional, Tuple

import structlog
from web3 import Web3

from bundler.chain.interface import ChainInterface
from bundler.core.account import AccountIdentity
from bundler.core.bundle import BundleEntry
from bundler.core.transaction import RawCall
from bundler.engine.executor import BundleExecutor
from bundler.launch.abi import ERC20_ABI, UNISWAP_V2_ROUTER_ABI
from bundler.launch.plan import LaunchPlan

logger = structlog.get_logger(__name__)


class LaunchCallFactory:
    """
    Encodes the launch calls for one plan.

    Calls come out as RawCall skeletons with no fee fields; the executor
    prices and signs them. Only the liquidity call carries a gas limit.
    """

    def __init__(self, plan: LaunchPlan):
        self.plan = plan
        w3 = Web3()
        self.token = w3.eth.contract(address=plan.token_address, abi=ERC20_ABI)
        self.router = w3.eth.contract(address=plan.router_address, abi=UNISWAP_V2_ROUTER_ABI)

    def approve(self) -> RawCall:
        """Allow the router to move the liquidity tokens."""
        data = self.token.encode_abi(
            "approve",
            args=[self.router.address, self.plan.approval_amount_units],
        )
        return RawCall(to=self.token.address, data=data)

    def add_liquidity(self, owner: str, deadline: int) -> RawCall:
        """Seed the token/ETH pool; LP tokens go to ``owner``."""
        data = self.router.encode_abi(
            "addLiquidityETH",
            args=[
                self.token.address,
                self.plan.desired_token_amount_units,
                self.plan.amount_token_min_units,
                self.plan.amount_eth_min_wei,
                Web3.to_checksum_address(owner),
                deadline,
            ],
        )
        return RawCall(
            to=self.router.address,
            data=data,
            value=self.plan.liquidity_amount_wei,
            gas_limit=self.plan.liquidity_gas_limit,
        )

    def fund(self, recipient: str, amount_wei: int) -> RawCall:
        """Plain ether transfer."""
        return RawCall(to=Web3.to_checksum_address(recipient), value=amount_wei)

    def buy(self, recipient: str, amount_wei: int, deadline: int) -> RawCall:
        """Swap ``amount_wei`` of ether for tokens along WETH -> token."""
        data = self.router.encode_abi(
            "swapExactETHForTokens",
            args=[
                self.plan.min_tokens_out_units,
                [self.plan.weth_address, self.token.address],
                Web3.to_checksum_address(recipient),
                deadline,
            ],
        )
        return RawCall(to=self.router.address, data=data, value=amount_wei)


async def plan_funding(
    plan: LaunchPlan,
    snipers: List[AccountIdentity],
    chain: ChainInterface,
) -> List[Tuple[AccountIdentity, int]]:
    """
    Decide how much ether each sniper wallet receives.

    Without a required balance every sniper gets its buy amount. With one,
    a sniper gets only the shortfall between its balance and the required
    balance, and none if it already holds enough.
    """
    buy_amounts = plan.buy_amounts_wei
    required = plan.required_sniper_balance_wei
    if required is None:
        return list(zip(snipers, buy_amounts))

    balances = await asyncio.gather(*(chain.get_balance(s.address) for s in snipers))
    funding = []
    for sniper, balance in zip(snipers, balances):
        if balance >= required:
            logger.info("sniper_balance_sufficient", sniper=sniper.address, balance=balance)
            continue
        funding.append((sniper, required - balance))
    return funding


async def build_launch_entries(
    plan: LaunchPlan,
    executor: BundleExecutor,
    snipers: List[AccountIdentity],
    now: Optional[int] = None,
) -> List[BundleEntry]:
    """
    Build the ordered launch bundle entries.

    Args:
        plan: Launch plan
        executor: Executor supplying the executing and sponsor identities
        snipers: Resolved sniper identities, in plan order
        now: Unix time used for deadlines (current time if not provided)

    Returns:
        Entries in execution order: approve, add liquidity, fundings, buys
    """
    deadline = (now if now is not None else int(time.time())) + plan.deadline_seconds
    calls = LaunchCallFactory(plan)

    entries = [
        BundleEntry.create(executor.executor, calls.approve()),
        BundleEntry.create(executor.executor, calls.add_liquidity(executor.executor.address, deadline)),
    ]

    for sniper, amount in await plan_funding(plan, snipers, executor.chain):
        entries.append(BundleEntry.create(executor.sponsor, calls.fund(sniper.address, amount)))

    for sniper, amount in zip(snipers, plan.buy_amounts_wei):
        entries.append(BundleEntry.create(sniper, calls.buy(sniper.address, amount, deadline)))

    logger.info(
        "launch_bundle_planned",
        entries=len(entries),
        snipers=len(snipers),
        deadline=deadline,
    )
    return entries
