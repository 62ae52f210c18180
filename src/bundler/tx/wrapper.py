"""
Transaction Wrapper - normalizes raw calls into submittable transactions.
"""

from typing import Optional

from bundler.core.errors import InvalidCall
from bundler.core.transaction import RawCall, TransactionRequest
from bundler.tx.fees import FeeQuote

TRANSFER_GAS_LIMIT = 21_000
CONTRACT_CALL_GAS_LIMIT = 1_000_000


class TransactionWrapper:
    """
    Attaches chain id, gas limit and fee fields to raw calls.

    Gas limit precedence: explicit override on the call, then the node
    estimate, then a fixed default per transaction class.
    """

    def __init__(
        self,
        chain_id: int,
        transfer_gas_limit: int = TRANSFER_GAS_LIMIT,
        contract_gas_limit: int = CONTRACT_CALL_GAS_LIMIT,
    ):
        self.chain_id = chain_id
        self.transfer_gas_limit = transfer_gas_limit
        self.contract_gas_limit = contract_gas_limit

    def default_gas_limit(self, call: RawCall) -> int:
        """Fixed gas limit for the call's class."""
        return self.transfer_gas_limit if call.is_plain_transfer else self.contract_gas_limit

    def wrap(
        self,
        call: RawCall,
        fees: FeeQuote,
        gas_estimate: Optional[int] = None,
    ) -> TransactionRequest:
        """
        Normalize a raw call.

        Fee fields already present on the call are kept; otherwise the
        quote's fields are attached.

        Args:
            call: The raw call
            fees: Current fee quote
            gas_estimate: Node gas estimate, if one was obtained

        Returns:
            Chain-submittable transaction request

        Raises:
            InvalidCall: If the call has neither destination nor data, or
                the resulting fee fields mix both models
        """
        if call.to is None and not call.has_data:
            raise InvalidCall("Call has neither a destination nor call data")

        if call.gas_limit is not None:
            gas_limit = call.gas_limit
        elif gas_estimate is not None:
            gas_limit = gas_estimate
        else:
            gas_limit = self.default_gas_limit(call)

        explicit_fees = (
            call.gas_price is not None
            or call.max_fee_per_gas is not None
            or call.max_priority_fee_per_gas is not None
        )
        if explicit_fees:
            gas_price = call.gas_price
            max_fee = call.max_fee_per_gas
            max_priority = call.max_priority_fee_per_gas
        else:
            gas_price = fees.gas_price
            max_fee = fees.max_fee_per_gas
            max_priority = fees.max_priority_fee_per_gas

        request = TransactionRequest(
            chain_id=self.chain_id,
            gas_limit=gas_limit,
            to=call.to,
            value=call.value,
            data=call.data if call.has_data else None,
            nonce=call.nonce,
            gas_price=gas_price,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=max_priority,
        )
        request.validate_fee_model()
        return request
