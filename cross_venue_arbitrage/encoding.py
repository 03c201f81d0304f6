"""
Contract-call encoding for the agent contract (selector + ABI-encoded args).
"""

from typing import List, Sequence

from eth_abi import encode as eth_abi_encode
from web3 import Web3

from dex.abi import (
    ADD_LIQUIDITY_SIGNATURE,
    ARBITRAGE_SIGNATURE,
    EXECUTE_SWAP_SIGNATURE,
    REMOVE_LIQUIDITY_SIGNATURE,
)

from .exceptions import ValidationError
from .models import TradeAction
from .sizing import minimum_amount_out


def _arg_types(signature: str) -> List[str]:
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return inner.split(",") if inner else []


def selector(signature: str) -> bytes:
    """First four bytes of keccak256(signature)."""
    return bytes(Web3.keccak(text=signature)[:4])


def encode_call(signature: str, args: Sequence) -> bytes:
    return selector(signature) + eth_abi_encode(_arg_types(signature), list(args))


def encode_arbitrage_call(
    token: str, amount: int, buy_from_primary: bool, min_profit: int
) -> bytes:
    """``arbitrage(token, usdcToUse, buyFromPrimary, minProfit)``"""
    if amount <= 0:
        raise ValidationError(f"Refusing to encode a non-positive amount: {amount}")
    return encode_call(
        ARBITRAGE_SIGNATURE,
        [Web3.to_checksum_address(token), amount, buy_from_primary, min_profit],
    )


def encode_trade_action(
    action: TradeAction, quote_address: str, slippage_bps: int = 0
) -> bytes:
    """
    Encode a swap or liquidity action for the agent contract.

    For swaps ``amount_a`` is the input and ``amount_b`` the expected output;
    for liquidity actions the amounts follow ``token_a``/``token_b``.

    Raises:
        ValidationError: For ``none``/unknown actions or missing tokens
    """
    if action.type not in ("swap", "addLiquidity", "removeLiquidity"):
        raise ValidationError(f"Unsupported action type: {action.type}")
    if not action.token_a or not action.token_b:
        raise ValidationError(f"Missing token addresses for {action.type}")

    quote_is_a = action.token_a.lower() == quote_address.lower()
    token = Web3.to_checksum_address(action.token_b if quote_is_a else action.token_a)

    if action.type == "swap":
        return encode_call(
            EXECUTE_SWAP_SIGNATURE,
            [
                token,
                action.amount_a,
                minimum_amount_out(action.amount_b, slippage_bps),
                quote_is_a,
            ],
        )

    if action.type == "addLiquidity":
        token_amount, quote_amount = (
            (action.amount_b, action.amount_a) if quote_is_a else (action.amount_a, action.amount_b)
        )
        return encode_call(
            ADD_LIQUIDITY_SIGNATURE,
            [
                token,
                token_amount,
                quote_amount,
                minimum_amount_out(token_amount, slippage_bps),
                minimum_amount_out(quote_amount, slippage_bps),
            ],
        )

    # removeLiquidity: amount_a is the LP token amount
    return encode_call(REMOVE_LIQUIDITY_SIGNATURE, [token, action.amount_a, 0, 0])
