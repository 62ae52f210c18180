"""
Tests for launch plans and launch bundle construction.

Verifies:
1. Plan validation (addresses, amounts, wallet/amount pairing)
2. Sniper wallet resolution from the environment
3. Call encoding for approve, liquidity and buy swaps
4. Funding plans and launch entry order
"""

import json

import pytest
from pydantic import ValidationError as PlanValidationError
from web3 import Web3

from bundler.engine.builder import build_executor
from bundler.launch.calls import LaunchCallFactory, build_launch_entries, plan_funding
from bundler.launch.plan import DEFAULT_LIQUIDITY_GAS_LIMIT, LaunchPlan, load_plan, to_base_units

TOKEN_ADDRESS = "0x" + "aa" * 20
WETH_ADDRESS = "0x7b79995e5f793A07Bc00c21412e50Ecae098E7f9"
ROUTER_ADDRESS = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
SNIPER_KEYS = ["0x" + "44" * 32, "0x" + "55" * 32]

APPROVE_SELECTOR = "0x095ea7b3"
ADD_LIQUIDITY_ETH_SELECTOR = "0xf305d719"
SWAP_EXACT_ETH_SELECTOR = "0x7ff36ab5"


def _plan(**overrides) -> LaunchPlan:
    data = {
        "token_address": TOKEN_ADDRESS,
        "router_address": ROUTER_ADDRESS,
        "weth_address": WETH_ADDRESS,
        "approval_amount": "1000000",
        "desired_token_amount": "500000",
        "liquidity_amount": "2.5",
        "sniper_wallets": list(SNIPER_KEYS),
        "desired_buy_amounts": ["0.1", "0.25"],
    }
    data.update(overrides)
    return LaunchPlan.model_validate(data)


class TestLaunchPlan:
    """Tests for plan validation."""

    def test_addresses_checksummed(self):
        plan = _plan()

        assert plan.token_address == Web3.to_checksum_address(TOKEN_ADDRESS)
        assert plan.router_address == ROUTER_ADDRESS

    def test_amount_conversion(self):
        plan = _plan(token_decimals=9)

        assert plan.approval_amount_units == 1_000_000 * 10 ** 9
        assert plan.liquidity_amount_wei == Web3.to_wei(2.5, "ether")
        assert plan.buy_amounts_wei == [10 ** 17, 25 * 10 ** 16]
        assert plan.required_sniper_balance_wei is None

    def test_to_base_units(self):
        assert to_base_units("1.5", 6) == 1_500_000
        assert to_base_units("0", 18) == 0

    def test_mismatched_wallets_and_amounts(self):
        with pytest.raises(PlanValidationError):
            _plan(desired_buy_amounts=["0.1"])

    @pytest.mark.parametrize("field,value", [
        ("token_address", "0x1234"),
        ("liquidity_amount", "lots"),
        ("approval_amount", "-1"),
        ("liquidity_gas_limit", 0),
    ])
    def test_invalid_fields(self, field, value):
        with pytest.raises(PlanValidationError):
            _plan(**{field: value})

    def test_sniper_environment_references(self):
        plan = _plan(sniper_wallets=["$SNIPER_A", SNIPER_KEYS[1]])

        identities = plan.sniper_identities({"SNIPER_A": SNIPER_KEYS[0]})

        assert [i.private_key for i in identities] == SNIPER_KEYS
        assert [i.label for i in identities] == ["sniper-1", "sniper-2"]

    def test_unset_reference(self):
        plan = _plan(sniper_wallets=["$MISSING", SNIPER_KEYS[1]])

        with pytest.raises(ValueError, match="MISSING"):
            plan.sniper_identities({})

    def test_load_plan(self, tmp_path):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps({
            "token_address": TOKEN_ADDRESS,
            "weth_address": WETH_ADDRESS,
            "approval_amount": "1",
            "desired_token_amount": "1",
            "liquidity_amount": "1",
        }))

        plan = load_plan(str(path))

        assert plan.router_address == ROUTER_ADDRESS
        assert plan.sniper_wallets == []

    def test_load_missing_plan(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_plan(str(tmp_path / "missing.json"))


class TestLaunchCalls:
    """Tests for call encoding."""

    def test_approve(self):
        call = LaunchCallFactory(_plan()).approve()

        assert call.data.startswith(APPROVE_SELECTOR)
        assert call.to == Web3.to_checksum_address(TOKEN_ADDRESS)
        assert ROUTER_ADDRESS[2:].lower() in call.data.lower()
        assert call.value == 0

    def test_add_liquidity(self, executor_identity):
        call = LaunchCallFactory(_plan()).add_liquidity(executor_identity.address, deadline=1_700_000_000)

        assert call.data.startswith(ADD_LIQUIDITY_ETH_SELECTOR)
        assert call.to == ROUTER_ADDRESS
        assert call.value == Web3.to_wei(2.5, "ether")
        assert executor_identity.address[2:].lower() in call.data.lower()
        assert call.gas_limit == DEFAULT_LIQUIDITY_GAS_LIMIT

    def test_liquidity_gas_limit_override(self, executor_identity):
        plan = _plan(liquidity_gas_limit=6_500_000)

        call = LaunchCallFactory(plan).add_liquidity(executor_identity.address, deadline=1_700_000_000)

        assert call.gas_limit == 6_500_000

    def test_buy(self, snipers):
        call = LaunchCallFactory(_plan()).buy(snipers[0].address, 10 ** 17, deadline=1_700_000_000)

        assert call.data.startswith(SWAP_EXACT_ETH_SELECTOR)
        assert call.gas_limit is None
        assert call.value == 10 ** 17
        assert WETH_ADDRESS[2:].lower() in call.data.lower()

    def test_fund_is_plain_transfer(self, snipers):
        call = LaunchCallFactory(_plan()).fund(snipers[0].address, 5)

        assert call.is_plain_transfer
        assert call.value == 5


class TestLaunchEntries:
    """Tests for the ordered launch bundle."""

    @pytest.mark.asyncio
    async def test_funding_without_required_balance(self, mock_chain, snipers):
        funding = await plan_funding(_plan(), snipers, mock_chain)

        assert funding == [(snipers[0], 10 ** 17), (snipers[1], 25 * 10 ** 16)]

    @pytest.mark.asyncio
    async def test_funding_tops_up_to_required_balance(self, mock_chain, snipers):
        mock_chain.balances[snipers[0].address] = 4 * 10 ** 17
        mock_chain.balances[snipers[1].address] = 10 ** 18

        funding = await plan_funding(_plan(required_sniper_balance="0.5"), snipers, mock_chain)

        assert funding == [(snipers[0], 10 ** 17)]

    @pytest.mark.asyncio
    async def test_entry_order_and_signers(self, executor_settings, snipers):
        executor = build_executor(executor_settings)

        entries = await build_launch_entries(_plan(), executor, snipers, now=1_700_000_000)

        assert [e.signer for e in entries] == [
            executor.executor,
            executor.executor,
            executor.sponsor,
            executor.sponsor,
            snipers[0],
            snipers[1],
        ]
        assert entries[0].transaction.data.startswith(APPROVE_SELECTOR)
        assert entries[1].transaction.data.startswith(ADD_LIQUIDITY_ETH_SELECTOR)
        assert [e.transaction.to for e in entries[2:4]] == [s.address for s in snipers]
        assert all(e.transaction.data.startswith(SWAP_EXACT_ETH_SELECTOR) for e in entries[4:])

    @pytest.mark.asyncio
    async def test_launch_bundle_signs(self, executor_settings, snipers):
        executor = build_executor(executor_settings)
        executor.add_entries(await build_launch_entries(_plan(), executor, snipers, now=1_700_000_000))

        signed = await executor.prepare()

        assert len(signed) == 6
        assert [tx.nonce for tx in signed.transactions] == [0, 1, 0, 1, 0, 0]

    @pytest.mark.asyncio
    async def test_liquidity_gas_limit_skips_estimation(self, executor_settings, mock_chain, snipers):
        mock_chain.reverting_targets.add(ROUTER_ADDRESS)
        executor = build_executor(executor_settings)
        entries = await build_launch_entries(_plan(), executor, snipers, now=1_700_000_000)
        executor.add_entries(entries)

        await executor.prepare()
        request = executor.wrapper.wrap(entries[1].transaction, await executor.fee_oracle.get_fees(), None)

        assert request.gas_limit == DEFAULT_LIQUIDITY_GAS_LIMIT
        assert not any(
            tx.get("data", "").startswith(ADD_LIQUIDITY_ETH_SELECTOR) for tx in mock_chain.estimate_calls
        )
