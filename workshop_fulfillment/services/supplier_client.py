# workshop_fulfillment/services/supplier_client.py
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import MaxRetryError, TimeoutError as TransportTimeout
from urllib3.util.retry import Retry

from workshop_fulfillment.config import config
from workshop_fulfillment.exceptions import SupplierError, SupplierTimeoutError
from workshop_fulfillment.logging_setup import get_logger

logger = get_logger('supplier')

# Supplier side order states, normalized
SUPPLIER_OPEN = 'OPEN'
SUPPLIER_SHIPPED = 'SHIPPED'
SUPPLIER_DELIVERED = 'DELIVERED'
SUPPLIER_CANCELLED = 'CANCELLED'

_STATUS_ALIASES = {
    'NEW': SUPPLIER_OPEN,
    'OPEN': SUPPLIER_OPEN,
    'CONFIRMED': SUPPLIER_OPEN,
    'PROCESSING': SUPPLIER_OPEN,
    'BACKORDERED': SUPPLIER_OPEN,
    'SHIPPED': SUPPLIER_SHIPPED,
    'PARTIALLY_SHIPPED': SUPPLIER_SHIPPED,
    'IN_TRANSIT': SUPPLIER_SHIPPED,
    'DELIVERED': SUPPLIER_DELIVERED,
    'COMPLETED': SUPPLIER_DELIVERED,
    'CANCELLED': SUPPLIER_CANCELLED,
    'CANCELED': SUPPLIER_CANCELLED,
    'REJECTED': SUPPLIER_CANCELLED
}


def normalize_supplier_status(raw: Optional[str]) -> str:
    code = str(raw or '').strip().upper()
    if code not in _STATUS_ALIASES:
        raise SupplierError(f"Supplier returned unknown order status {raw!r}", code='SUPPLIER_STATUS')
    return _STATUS_ALIASES[code]


@dataclass(frozen=True)
class SupplierOrder:
    reference: str
    eta: Optional[date] = None


@dataclass(frozen=True)
class SupplierOrderStatus:
    status: str
    received_quantity: int = 0


class SupplierClient(ABC):
    """Capability set of an external supplier ordering integration."""

    name = 'supplier'

    @abstractmethod
    def place_order(self, sku: str, quantity: int) -> SupplierOrder:
        """Place an order. Raises SupplierError or SupplierTimeoutError."""
        pass

    @abstractmethod
    def get_order_status(self, reference: str) -> SupplierOrderStatus:
        """Fetch the supplier's view of an order. Raises SupplierError or SupplierTimeoutError."""
        pass


class DisabledSupplierClient(SupplierClient):
    """Stand-in used when the integration is switched off in settings."""

    name = 'disabled'

    def place_order(self, sku: str, quantity: int) -> SupplierOrder:
        raise SupplierError("Supplier integration disabled", code='SUPPLIER_DISABLED')

    def get_order_status(self, reference: str) -> SupplierOrderStatus:
        raise SupplierError("Supplier integration disabled", code='SUPPLIER_DISABLED')


class HttpSupplierClient(SupplierClient):
    """JSON over HTTP client for the supplier ordering API.

    Every call is bounded by ``timeout`` seconds; connection failures and
    gateway errors are retried up to ``max_retries`` times with exponential
    backoff before the error is surfaced.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = '',
        name: str = 'BeX',
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        session: Optional[requests.Session] = None
    ):
        if not base_url:
            raise SupplierError("Supplier base_url is not configured", code='SUPPLIER_CONFIG')

        self.base_url = base_url.rstrip('/')
        self.name = name
        self.timeout = timeout

        self.session = session or requests.Session()
        retry = Retry(
            total=max_retries,
            connect=max_retries,
            read=max_retries,
            status=max_retries,
            backoff_factor=backoff_seconds,
            status_forcelist=(429, 502, 503, 504),
            allowed_methods=frozenset({'GET', 'POST'}),
            raise_on_status=False
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount('http://', adapter)
        self.session.mount('https://', adapter)

        if api_key:
            self.session.headers['Authorization'] = f"Bearer {api_key}"
        self.session.headers['Accept'] = 'application/json'

    def _request(self, method: str, path: str, **kwargs) -> Dict:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            if _is_timeout(e):
                logger.warning(f"{self.name} {method} {path} timed out after {self.timeout}s")
                raise SupplierTimeoutError(f"{self.name} did not answer within {self.timeout}s: {str(e)}")
            logger.warning(f"{self.name} {method} {path} failed: {str(e)}")
            raise SupplierError(f"{self.name} request failed: {str(e)}")

        if response.status_code >= 400:
            raise SupplierError(
                f"{self.name} returned HTTP {response.status_code}",
                code=f"HTTP_{response.status_code}",
                details={'body': response.text[:500]}
            )

        try:
            return response.json()
        except ValueError:
            raise SupplierError(f"{self.name} returned a non-JSON response")

    def place_order(self, sku: str, quantity: int) -> SupplierOrder:
        # Same key on every retry so the supplier can drop duplicates
        headers = {'Idempotency-Key': str(uuid.uuid4())}
        data = self._request('POST', '/orders', json={'sku': sku, 'quantity': quantity}, headers=headers)

        reference = data.get('reference') or data.get('orderReference')
        if not reference:
            raise SupplierError(f"{self.name} accepted the order but returned no reference")

        return SupplierOrder(reference=str(reference), eta=_parse_date(data.get('eta')))

    def get_order_status(self, reference: str) -> SupplierOrderStatus:
        data = self._request('GET', f"/orders/{reference}")
        received = data.get('receivedQuantity', data.get('received_qty', 0)) or 0
        return SupplierOrderStatus(
            status=normalize_supplier_status(data.get('status')),
            received_quantity=int(received)
        )


def _is_timeout(error: requests.RequestException) -> bool:
    """Read timeouts that used up their retries arrive as ConnectionError(MaxRetryError)."""
    if isinstance(error, requests.Timeout):
        return True
    cause = error.args[0] if error.args else None
    if isinstance(cause, MaxRetryError):
        cause = cause.reason
    return isinstance(cause, TransportTimeout)


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        logger.warning(f"Ignoring unparseable supplier ETA {value!r}")
        return None


def build_supplier_client() -> SupplierClient:
    """Create the supplier client described by the SUPPLIER_API settings."""
    settings = config.supplier_config
    if not settings['enabled']:
        return DisabledSupplierClient()

    return HttpSupplierClient(
        base_url=settings['base_url'],
        api_key=settings['api_key'],
        name=settings['name'],
        timeout=settings['timeout_seconds'],
        max_retries=settings['max_retries'],
        backoff_seconds=settings['backoff_seconds']
    )
