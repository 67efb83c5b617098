"""
Solana Trader
============
Swap execution on Solana via the Jupiter aggregator
"""

import asyncio
import base64
import logging
import time
from typing import Dict, List, Optional

import aiohttp
import base58
from solders.keypair import Keypair
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts

from ..core.core_constants import APIEndpoints, SolanaNetworks, TimeConstants, TradingDefaults
from ..core.core_exceptions import CollaboratorError, ConfigurationError, SwapExecutionError
from ..utils.utils_retry import RetryPolicy

logger = logging.getLogger(__name__)


class SolanaTrader:
    """Signs and sends Jupiter swap transactions with RPC endpoint fallback"""

    def __init__(self, private_key_base58: str, rpc_urls: Optional[List[str]] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 priority_fee: float = TradingDefaults.PRIORITY_FEE,
                 session: Optional[aiohttp.ClientSession] = None):
        self.rpc_urls = list(rpc_urls or [SolanaNetworks.MAINNET])
        self.retry_policy = retry_policy or RetryPolicy()
        self.priority_fee = priority_fee
        self.jupiter_api_url = APIEndpoints.JUPITER_V6

        # Setup wallet
        try:
            private_key_bytes = base58.b58decode(private_key_base58)
            self.keypair = Keypair.from_bytes(private_key_bytes)
            self.wallet_address = str(self.keypair.pubkey())
            logger.info(f"✅ Solana wallet initialized: {self.wallet_address}")
        except Exception as e:
            logger.error(f"❌ Failed to initialize wallet: {e}")
            raise ConfigurationError(f"Invalid private key: {e}")

        self._clients: Dict[str, AsyncClient] = {url: AsyncClient(url) for url in self.rpc_urls}
        self._session = session
        self._owns_session = session is None

        # Statistics
        self.successful_swaps = 0
        self.failed_swaps = 0
        self.total_fees_paid = 0.0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=TimeConstants.API_TIMEOUT)
            )
            self._owns_session = True
        return self._session

    async def execute_swap(self, wallet: str, input_mint: str, output_mint: str,
                           amount: int, slippage_bps: int) -> str:
        """
        Swap amount (base units of input_mint) into output_mint

        Returns:
            Confirmed transaction signature

        Raises:
            SwapExecutionError: quote, build, send or confirmation failed after retries
        """
        if wallet != self.wallet_address:
            raise SwapExecutionError(f"Wallet {wallet} is not managed by this trader")
        if amount <= 0:
            raise SwapExecutionError("Swap amount must be positive")

        logger.info(f"🔄 Swapping {amount} of {input_mint[:8]}... -> {output_mint[:8]}...")

        try:
            quote = await self.retry_policy.run(
                lambda: self._get_jupiter_quote(input_mint, output_mint, amount, slippage_bps),
                description="Jupiter quote"
            )
            logger.info(
                f"   📊 Quote: {quote.get('outAmount')} out, "
                f"price impact {float(quote.get('priceImpactPct', 0)):.2f}%"
            )

            swap_transaction = await self.retry_policy.run(
                lambda: self._get_jupiter_swap_transaction(quote),
                description="Jupiter swap transaction"
            )

            transaction = self._sign_transaction(swap_transaction)

            signature = await self.retry_policy.run_with_fallback(
                self.rpc_urls,
                lambda url: self._send_transaction(url, transaction),
                description="Send transaction"
            )
        except CollaboratorError as e:
            self.failed_swaps += 1
            logger.error(f"❌ Swap failed: {e.message}")
            raise SwapExecutionError(e.message) from e

        if not await self._wait_for_confirmation(signature):
            self.failed_swaps += 1
            raise SwapExecutionError(f"Transaction not confirmed: {signature}")

        self.successful_swaps += 1
        self.total_fees_paid += self.priority_fee
        return str(signature)

    async def _get_jupiter_quote(self, input_mint: str, output_mint: str,
                                 amount: int, slippage_bps: int) -> Dict:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "onlyDirectRoutes": "false",
            "asLegacyTransaction": "false"
        }

        session = await self._get_session()
        url = f"{self.jupiter_api_url}{APIEndpoints.JUPITER_QUOTE}"
        async with session.get(url, params=params) as response:
            if response.status == 400:
                error_text = await response.text()
                raise SwapExecutionError(f"Jupiter rejected quote request: {error_text}")
            response.raise_for_status()
            return await response.json()

    async def _get_jupiter_swap_transaction(self, quote: Dict) -> str:
        swap_request = {
            "quoteResponse": quote,
            "userPublicKey": self.wallet_address,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": int(self.priority_fee * 1_000_000_000)
        }

        session = await self._get_session()
        url = f"{self.jupiter_api_url}{APIEndpoints.JUPITER_SWAP}"
        async with session.post(url, json=swap_request,
                                headers={"Content-Type": "application/json"}) as response:
            response.raise_for_status()
            result = await response.json()

        swap_transaction = result.get("swapTransaction")
        if not swap_transaction:
            raise SwapExecutionError("Jupiter returned no swap transaction")
        return swap_transaction

    def _sign_transaction(self, transaction_data: str) -> VersionedTransaction:
        try:
            raw = VersionedTransaction.from_bytes(base64.b64decode(transaction_data))
            return VersionedTransaction(raw.message, [self.keypair])
        except Exception as e:
            raise SwapExecutionError(f"Failed to sign swap transaction: {e}")

    async def _send_transaction(self, url: str, transaction: VersionedTransaction) -> Signature:
        opts = TxOpts(skip_preflight=False, preflight_commitment=Confirmed)
        response = await self._clients[url].send_transaction(transaction, opts=opts)
        if response.value is None:
            raise SwapExecutionError(f"RPC {url} returned no signature")
        logger.info(f"✅ Transaction sent: {response.value}")
        return response.value

    async def _wait_for_confirmation(self, signature: Signature,
                                     timeout: int = TimeConstants.TRANSACTION_TIMEOUT) -> bool:
        client = self._clients[self.rpc_urls[0]]
        start_time = time.time()

        while time.time() - start_time < timeout:
            try:
                response = await client.get_signature_statuses([signature])
            except Exception as e:
                logger.warning(f"⚠️  Confirmation poll failed for {signature}: {e}")
            else:
                status = response.value[0] if response.value else None
                if status is not None and status.confirmation_status is not None:
                    if status.err:
                        logger.error(f"❌ Transaction failed: {status.err}")
                        return False
                    logger.info(f"✅ Transaction confirmed: {signature}")
                    return True

            await asyncio.sleep(TimeConstants.CONFIRMATION_POLL)

        logger.warning(f"⏰ Transaction confirmation timeout: {signature}")
        return False

    def get_trading_stats(self) -> Dict:
        total = self.successful_swaps + self.failed_swaps
        return {
            "wallet_address": self.wallet_address,
            "successful_swaps": self.successful_swaps,
            "failed_swaps": self.failed_swaps,
            "success_rate": (self.successful_swaps / max(1, total)) * 100,
            "total_fees_paid": self.total_fees_paid,
            "rpc_endpoints": len(self.rpc_urls),
        }

    async def close(self):
        """Close RPC clients and the HTTP session"""
        for client in self._clients.values():
            await client.close()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        logger.info("✅ Solana client closed")
