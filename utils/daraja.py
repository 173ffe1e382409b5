"""
Safaricom Daraja API client: OAuth token cache, STK Push and STK Push query.
"""
import logging
import threading
import time

import requests
from requests.auth import HTTPBasicAuth

from utils.daraja_request import (
    build_stk_push_payload,
    build_stk_query_payload,
    generate_timestamp,
)
from utils.errors import ProviderAuthError, TransportError

logger = logging.getLogger(__name__)

SANDBOX_URL = 'https://sandbox.safaricom.co.ke'
PRODUCTION_URL = 'https://api.safaricom.co.ke'

TOKEN_PATH = '/oauth/v1/generate?grant_type=client_credentials'
STK_PUSH_PATH = '/mpesa/stkpush/v1/processrequest'
STK_QUERY_PATH = '/mpesa/stkpushquery/v1/query'


class TokenCache:
    """
    Holds one OAuth bearer token and the instant it should be renewed.

    `fetch_token` returns `(token, expires_in_seconds)` and raises
    ProviderAuthError on failure. The token is renewed `safety_margin`
    seconds before the provider says it expires. Refresh is single-flight:
    concurrent callers wait on the lock and reuse the fresh token.
    """
    SAFETY_MARGIN_SECONDS = 300

    def __init__(self, fetch_token, clock=time.monotonic, safety_margin=SAFETY_MARGIN_SECONDS):
        self._fetch_token = fetch_token
        self._clock = clock
        self._lock = threading.Lock()
        self.safety_margin = safety_margin
        self.token = None
        self.expiry = 0.0

    def _cached(self):
        if self.token and self._clock() < self.expiry:
            return self.token
        return None

    def get_access_token(self):
        token = self._cached()
        if token:
            return token
        with self._lock:
            token = self._cached()
            if token:
                return token
            token, expires_in = self._fetch_token()
            self.token = token
            self.expiry = self._clock() + expires_in - self.safety_margin
            return token

    def invalidate(self):
        with self._lock:
            self.token = None
            self.expiry = 0.0


class DarajaClient:
    """Thin HTTP client over the Daraja endpoints. Returns the provider's JSON bodies as dicts."""

    def __init__(self, consumer_key, consumer_secret, shortcode, passkey, callback_url,
                 environment='sandbox', timeout=30, session=None, clock=time.monotonic):
        self.environment = environment
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.base_url = PRODUCTION_URL if environment == 'production' else SANDBOX_URL
        self.token_cache = TokenCache(self._request_token, clock=clock)

    @classmethod
    def from_config(cls, config):
        return cls(
            consumer_key=config.get('MPESA_CONSUMER_KEY', ''),
            consumer_secret=config.get('MPESA_CONSUMER_SECRET', ''),
            shortcode=config.get('MPESA_SHORTCODE', ''),
            passkey=config.get('MPESA_PASSKEY', ''),
            callback_url=config.get('MPESA_CALLBACK_URL', ''),
            environment=config.get('MPESA_ENVIRONMENT', 'sandbox'),
            timeout=config.get('MPESA_HTTP_TIMEOUT', 30),
        )

    @property
    def is_configured(self):
        return bool(self.consumer_key and self.consumer_secret and self.callback_url)

    def config_status(self):
        """Configuration summary safe to expose: no secrets, only presence flags."""
        return {
            'environment': self.environment,
            'shortcode': self.shortcode,
            'hasConsumerKey': bool(self.consumer_key),
            'hasConsumerSecret': bool(self.consumer_secret),
            'hasPasskey': bool(self.passkey),
            'hasCallbackUrl': bool(self.callback_url),
        }

    def _request_token(self):
        try:
            response = self.session.get(
                f"{self.base_url}{TOKEN_PATH}",
                auth=HTTPBasicAuth(self.consumer_key, self.consumer_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("[Daraja] Token request failed: %s", e)
            raise ProviderAuthError(f"Failed to reach M-Pesa OAuth endpoint: {e}") from e

        if not response.ok:
            logger.error("[Daraja] Token error: status=%s body=%s", response.status_code, response.text)
            raise ProviderAuthError(f"Failed to get access token: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderAuthError("M-Pesa OAuth returned a non-JSON body") from e

        token = data.get('access_token')
        if not token:
            raise ProviderAuthError("M-Pesa OAuth response is missing access_token")
        try:
            expires_in = int(data.get('expires_in') or 3599)
        except (TypeError, ValueError):
            expires_in = 3599

        logger.info("[Daraja] Access token obtained (expires in %ss)", expires_in)
        return token, expires_in

    def get_access_token(self):
        return self.token_cache.get_access_token()

    def _send(self, path, payload):
        token = self.get_access_token()
        try:
            return self.session.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("[Daraja] POST %s failed: %s", path, e)
            raise TransportError(f"Failed to reach M-Pesa: {e}") from e

    def _post(self, path, payload):
        response = self._send(path, payload)
        if response.status_code == 401:
            # Token rejected before its advertised expiry; fetch a new one and retry once
            logger.warning("[Daraja] Access token rejected on %s; refreshing", path)
            self.token_cache.invalidate()
            response = self._send(path, payload)

        # Error payloads (errorCode/errorMessage) come with 4xx/5xx; the caller interprets them
        try:
            return response.json()
        except ValueError as e:
            logger.error("[Daraja] Non-JSON response from %s: status=%s", path, response.status_code)
            raise TransportError(f"Invalid response from M-Pesa (HTTP {response.status_code})") from e

    def stk_push(self, phone_number, amount, account_reference=None, transaction_desc=None):
        """Send the payment prompt. phone_number must already be normalized."""
        payload = build_stk_push_payload(
            shortcode=self.shortcode,
            passkey=self.passkey,
            timestamp=generate_timestamp(),
            phone_number=phone_number,
            amount=amount,
            callback_url=self.callback_url,
            account_reference=account_reference,
            transaction_desc=transaction_desc,
        )
        return self._post(STK_PUSH_PATH, payload)

    def stk_query(self, checkout_request_id):
        payload = build_stk_query_payload(
            shortcode=self.shortcode,
            passkey=self.passkey,
            timestamp=generate_timestamp(),
            checkout_request_id=checkout_request_id,
        )
        return self._post(STK_QUERY_PATH, payload)
