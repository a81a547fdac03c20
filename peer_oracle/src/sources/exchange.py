"""Exchange-backed source.

Endpoints:
    https://api.exchange.coinbase.com/products/{BASE}-{QUOTE}/ticker
    https://api.kraken.com/0/public/Ticker?pair={BASE}{QUOTE}

Both are public and need no API key. The estimate is the average of whichever
provider quotes were obtained.
"""

import asyncio
import logging

from .base import PriceSource, PriceSourceError, register_source

logger = logging.getLogger(__name__)


@register_source
class ExchangeSource(PriceSource):
    """Averages Coinbase and Kraken ticker prices for the configured pair."""

    name = "exchange"
    COINBASE_URL = "https://api.exchange.coinbase.com"
    KRAKEN_URL = "https://api.kraken.com/0/public"

    # Kraken uses non-standard ticker symbols
    KRAKEN_SYMBOL_MAP = {
        "btc": "XBT",
    }

    async def get_local_estimate(self) -> float:
        """Average the provider quotes that were fetched successfully.

        :returns: Mean of the available quotes.
        :raises PriceSourceError: If no provider returned a price.
        """
        quotes = await asyncio.gather(self._fetch_coinbase(), self._fetch_kraken())
        prices = [q for q in quotes if q is not None and q > 0]
        if not prices:
            raise PriceSourceError(f"No provider returned a price for {self.pair}")
        return sum(prices) / len(prices)

    async def _fetch_coinbase(self) -> float | None:
        """Fetch the last trade price from Coinbase Exchange.

        :returns: Price or None on failure.
        """
        symbol = f"{self.base.upper()}-{self.quote.upper()}"
        url = f"{self.COINBASE_URL}/products/{symbol}/ticker"

        try:
            response = await self._get(url)
            data = response.json()
            if "price" not in data:
                logger.warning(f"[coinbase] No price in response for {symbol}: {data}")
                return None
            return float(data["price"])

        except PriceSourceError as e:
            logger.warning(f"[coinbase] Failed to fetch {symbol}: {e}")
            return None
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"[coinbase] Failed to parse response for {symbol}: {e}")
            return None

    async def _fetch_kraken(self) -> float | None:
        """Fetch the last trade price from Kraken.

        :returns: Price or None on failure.
        """
        kraken_base = self.KRAKEN_SYMBOL_MAP.get(self.base, self.base.upper())
        symbol = f"{kraken_base}{self.quote.upper()}"

        try:
            response = await self._get(f"{self.KRAKEN_URL}/Ticker", params={"pair": symbol})
            data = response.json()

            if data.get("error"):
                logger.warning(f"[kraken] API error for {symbol}: {data['error']}")
                return None

            result = data.get("result", {})
            if not result:
                logger.warning(f"[kraken] No result for {symbol}")
                return None

            # 'c' is the last trade closed array: [price, lot volume]
            pair_data = list(result.values())[0]
            return float(pair_data["c"][0])

        except PriceSourceError as e:
            logger.warning(f"[kraken] Failed to fetch {symbol}: {e}")
            return None
        except (KeyError, ValueError, TypeError, IndexError) as e:
            logger.warning(f"[kraken] Failed to parse response for {symbol}: {e}")
            return None
