"""
Minimal contract ABIs for the venue read surface and the agent contract.

Only the functions the engine actually calls are listed.
"""

# Uniswap V2 Factory ABI (minimal - just what we need)
UNISWAP_V2_FACTORY_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "allPairsLength",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "", "type": "uint256"}],
        "name": "allPairs",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "", "type": "address"},
            {"name": "", "type": "address"},
        ],
        "name": "getPair",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
]

# Uniswap V2 Pair ABI (minimal)
UNISWAP_V2_PAIR_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "token0",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "token1",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "getReserves",
        "outputs": [
            {"name": "reserve0", "type": "uint112"},
            {"name": "reserve1", "type": "uint112"},
            {"name": "blockTimestampLast", "type": "uint32"},
        ],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "totalSupply",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]

# ERC20 ABI (minimal - for token info)
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
]

# Function signatures called on the agent contract through the relay
ARBITRAGE_SIGNATURE = "arbitrage(address,uint256,bool,uint256)"
EXECUTE_SWAP_SIGNATURE = "executeSwap(address,uint256,uint256,bool)"
ADD_LIQUIDITY_SIGNATURE = "addLiquidity(address,uint256,uint256,uint256,uint256)"
REMOVE_LIQUIDITY_SIGNATURE = "removeLiquidity(address,uint256,uint256,uint256)"
