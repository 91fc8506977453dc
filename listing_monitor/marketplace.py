"""Marketplace search collaborators.

`MarketplaceClient` is the contract the poll worker depends on. `EbayClient`
implements it against the eBay Browse API with an application token obtained
through the OAuth client-credentials grant.
"""
import base64
import re
import threading
import time
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence
import requests
from .config import Settings
from .errors import TransientUpstreamError
from .schemas import Item, SearchResult
from .utils import get_logger, retry

logger = get_logger(__name__)

API_HOSTS = {
    "PRODUCTION": "https://api.ebay.com",
    "SANDBOX": "https://api.sandbox.ebay.com",
}
SEARCH_PATH = "/buy/browse/v1/item_summary/search"
TOKEN_PATH = "/identity/v1/oauth2/token"
TOKEN_SCOPE = "https://api.ebay.com/oauth/api_scope"
# refresh the token this long before it actually expires
TOKEN_EXPIRY_BUFFER = 300


def filter_excluded(items: Iterable[Item], excluded_keywords: Sequence[str]) -> List[Item]:
    """Drop items whose title mentions any excluded keyword (case-insensitive)."""
    words = [w for w in excluded_keywords if w and w.strip()]
    if not words:
        return list(items)
    pattern = re.compile("|".join(re.escape(w.strip()) for w in words), re.I)
    return [item for item in items if not pattern.search(item.title or "")]


class MarketplaceClient(ABC):
    @abstractmethod
    def search(self, keywords: Sequence[str], excluded_keywords: Sequence[str] = (),
               min_price: Optional[float] = None, max_price: Optional[float] = None,
               conditions: Sequence[str] = (), sellers: Sequence[str] = ()) -> SearchResult:
        raise NotImplementedError


def build_filter(min_price=None, max_price=None, conditions=(), sellers=()) -> str:
    filters = ["priceCurrency:USD"]
    if min_price is not None or max_price is not None:
        lo = "" if min_price is None else f"{float(min_price):g}"
        hi = "" if max_price is None else f"{float(max_price):g}"
        filters.append(f"price:[{lo}..{hi}]")
    if conditions:
        filters.append("conditions:{%s}" % "|".join(conditions))
    if sellers:
        filters.append("sellers:{%s}" % "|".join(sellers))
    return ",".join(filters)


def parse_item(raw: dict) -> Item:
    price = raw.get("price") or {}
    try:
        value = float(price["value"]) if price.get("value") is not None else None
    except (TypeError, ValueError):
        value = None
    return Item(
        item_id=str(raw["itemId"]),
        title=raw.get("title") or "",
        price=value,
        currency=price.get("currency"),
        condition=raw.get("condition"),
        seller=(raw.get("seller") or {}).get("username"),
        link=raw.get("itemWebUrl"),
        image=(raw.get("image") or {}).get("imageUrl"),
    )


class EbayClient(MarketplaceClient):
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        if not settings.ebay_client_id:
            raise RuntimeError("EBAY_CLIENT_ID not set")
        if not settings.ebay_client_secret:
            raise RuntimeError("EBAY_CLIENT_SECRET not set")
        self.settings = settings
        self.base_url = API_HOSTS.get(settings.ebay_env, API_HOSTS["SANDBOX"])
        self.http = session or requests.Session()
        self._token = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()
        # token requests back off like poll jobs do
        self._fetch_token = retry(requests.RequestException, tries=max(settings.job_attempts, 1),
                                  delay=settings.job_backoff_ms / 1000, logger=logger)(self._request_token)

    def _request_token(self):
        creds = f"{self.settings.ebay_client_id}:{self.settings.ebay_client_secret}"
        resp = self.http.post(
            self.base_url + TOKEN_PATH,
            headers={
                "Authorization": "Basic " + base64.b64encode(creds.encode()).decode(),
                "Content-Type": "application/x-www-form-urlencoded",
            },
            data={"grant_type": "client_credentials", "scope": TOKEN_SCOPE},
            timeout=self.settings.ebay_timeout_seconds,
        )
        resp.raise_for_status()
        body = resp.json()
        return body["access_token"], int(body.get("expires_in", 7200))

    def access_token(self) -> str:
        with self._token_lock:
            if self._token and time.time() < self._token_expires_at - TOKEN_EXPIRY_BUFFER:
                return self._token
            logger.info("Fetching new eBay application token (%s)", self.settings.ebay_env)
            try:
                token, expires_in = self._fetch_token()
            except (requests.RequestException, KeyError, ValueError) as e:
                raise TransientUpstreamError(f"eBay authentication failed: {e}") from e
            self._token = token
            self._token_expires_at = time.time() + expires_in
            return token

    def search(self, keywords, excluded_keywords=(), min_price=None, max_price=None,
               conditions=(), sellers=()) -> SearchResult:
        params = {
            "q": " ".join(keywords),
            "filter": build_filter(min_price, max_price, conditions, sellers),
            "sort": "newlyListed",
            "limit": self.settings.ebay_search_limit,
        }
        headers = {
            "Authorization": f"Bearer {self.access_token()}",
            "Content-Type": "application/json",
            "X-EBAY-C-MARKETPLACE-ID": "EBAY_US",
            "X-EBAY-C-ENDUSERCTX": "contextualLocation=country=US",
        }
        try:
            resp = self.http.get(self.base_url + SEARCH_PATH, params=params, headers=headers,
                                 timeout=self.settings.ebay_timeout_seconds)
            if resp.status_code == 401:
                # token revoked early; the retry fetches a fresh one
                self._token = None
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise TransientUpstreamError(f"eBay search failed: {e}") from e
        items = [parse_item(raw) for raw in data.get("itemSummaries") or []]
        logger.debug("eBay returned %d of %s items for %r", len(items), data.get("total"), params["q"])
        return SearchResult(items=filter_excluded(items, excluded_keywords), total=int(data.get("total") or 0))
