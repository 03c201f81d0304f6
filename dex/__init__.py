"""
Venue-facing side of the cross-venue arbitrage engine: pool types, the
Uniswap V2 and snapshot adapters, reserve normalization and opportunity
scanning.
"""
