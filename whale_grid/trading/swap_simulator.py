"""
Swap Simulator
=============
Stand-in swap collaborator for demo mode and tests: no chain access,
deterministic signatures
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import List

import base58

from ..core.core_exceptions import SwapExecutionError

logger = logging.getLogger(__name__)


@dataclass
class SimulatedSwap:
    signature: str
    wallet: str
    input_mint: str
    output_mint: str
    amount: int
    slippage_bps: int


class SimulatedTrader:
    """Implements execute_swap without sending anything"""

    def __init__(self, wallet_address: str = "SIMULATED_WALLET"):
        self.wallet_address = wallet_address
        self.swaps: List[SimulatedSwap] = []
        logger.info(f"✅ Simulated trader initialized ({wallet_address})")

    async def execute_swap(self, wallet: str, input_mint: str, output_mint: str,
                           amount: int, slippage_bps: int) -> str:
        if amount <= 0:
            raise SwapExecutionError("Swap amount must be positive")

        seed = f"{wallet}:{input_mint}:{output_mint}:{amount}:{slippage_bps}:{len(self.swaps)}"
        signature = base58.b58encode(hashlib.sha256(seed.encode()).digest()).decode()

        self.swaps.append(SimulatedSwap(
            signature=signature,
            wallet=wallet,
            input_mint=input_mint,
            output_mint=output_mint,
            amount=amount,
            slippage_bps=slippage_bps,
        ))

        logger.info(f"🧪 Simulated swap {amount} {input_mint[:8]}... -> {output_mint[:8]}...: {signature[:16]}...")
        return signature

    async def close(self):
        pass
