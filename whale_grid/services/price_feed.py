"""
Price Feed
=========
Token prices from the DexScreener API
"""

import logging
import time
from typing import Dict, Iterable, Optional

import aiohttp

from ..core.core_models import TokenPrice, TokenKey
from ..core.core_constants import APIEndpoints, NATIVE_PRICE_ESTIMATES, TimeConstants
from ..core.core_exceptions import CollaboratorError, PriceFeedError
from ..utils.utils_retry import RetryPolicy

logger = logging.getLogger(__name__)


class DexScreenerPriceFeed:
    """Fetches USD prices, volume and liquidity for a token's most liquid pair"""

    def __init__(self, retry_policy: Optional[RetryPolicy] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 base_url: str = APIEndpoints.DEXSCREENER):
        self.retry_policy = retry_policy or RetryPolicy()
        self.base_url = base_url
        self._session = session
        self._owns_session = session is None

        # Statistics
        self.requests_made = 0
        self.requests_failed = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=TimeConstants.API_TIMEOUT)
            )
            self._owns_session = True
        return self._session

    async def get_price(self, chain: str, token: str) -> TokenPrice:
        """
        Current price of a token

        Raises:
            PriceFeedError: no pairs listed, or the API stayed unavailable after retries
        """
        self.requests_made += 1
        try:
            pair = await self.retry_policy.run(
                lambda: self._fetch_first_pair(token),
                description=f"DexScreener price {token[:8]}"
            )
        except PriceFeedError:
            self.requests_failed += 1
            raise
        except CollaboratorError as e:
            self.requests_failed += 1
            raise PriceFeedError(e.message) from e

        return self._parse_pair(chain, token, pair)

    async def get_prices(self, keys: Iterable[TokenKey]) -> Dict[TokenKey, TokenPrice]:
        """Prices for several tokens; tokens whose lookup fails are left out"""
        prices = {}
        for key in keys:
            try:
                prices[key] = await self.get_price(key.chain, key.token)
            except PriceFeedError as e:
                logger.warning(f"⚠️  Price unavailable for {key.chain}/{key.token}: {e.message}")
        return prices

    async def _fetch_first_pair(self, token: str) -> Dict:
        session = await self._get_session()
        url = f"{self.base_url}{APIEndpoints.DEXSCREENER_TOKENS.format(token=token)}"

        async with session.get(url) as response:
            response.raise_for_status()
            data = await response.json()

        pairs = data.get("pairs") or []
        if not pairs:
            raise PriceFeedError(f"No trading pairs found for token {token}")
        return pairs[0]

    @staticmethod
    def _parse_pair(chain: str, token: str, pair: Dict) -> TokenPrice:
        def nested(name: str, key: str) -> float:
            value = (pair.get(name) or {}).get(key)
            return float(value) if value is not None else 0.0

        try:
            price_usd = float(pair.get("priceUsd") or 0.0)
        except (TypeError, ValueError):
            price_usd = 0.0

        native_estimate = NATIVE_PRICE_ESTIMATES.get(chain.lower())
        price_native = price_usd / native_estimate if native_estimate else price_usd

        return TokenPrice(
            chain=chain,
            token=token,
            token_symbol=(pair.get("baseToken") or {}).get("symbol"),
            price_usd=price_usd,
            price_native=price_native,
            volume_24h=nested("volume", "h24"),
            liquidity=nested("liquidity", "usd"),
            price_change_24h=nested("priceChange", "h24"),
            timestamp=int(time.time()),
        )

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("✅ Price feed session closed")
