"""RPC module for the marketplace's external collaborators.

PaymentRPC talks JSON-RPC to the payment executor that moves funds between
wallets. Storefront catalog and registry collaborators live in
``rpc.storefront`` and ``rpc.registries``.
"""
import threading
import requests
from decimal import Decimal
from typing import Any, Dict, Optional

from config import settings_conf


class RPCError(Exception):
    """Base exception for RPC errors"""
    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        self.code = code
        self.method = method
        super().__init__(f"RPC Error [{code}] in {method}: {message}" if code else message)


class NodeConnectionError(RPCError):
    """Raised when connection to the executor fails"""
    pass


class NodeAuthError(RPCError):
    """Raised when authentication failed"""
    pass


class PaymentError(RPCError):
    """Payment executor error codes and messages

    Common error codes:
    -1  - General error during processing
    -5  - Invalid parameter
    -6  - Insufficient funds
    -20 - Invalid address
    -25 - Error submitting transfer
    """
    ERROR_MESSAGES = {
        -1: "General error during processing",
        -5: "Invalid parameter",
        -6: "Insufficient funds",
        -20: "Invalid address",
        -25: "Error submitting transfer",
    }

    def __init__(self, message: str, code: int, method: str):
        standard_msg = self.ERROR_MESSAGES.get(code, "Unknown error")
        full_msg = f"{standard_msg} - {message}" if message != standard_msg else message
        super().__init__(full_msg, code, method)


class RPCMethod:
    """Descriptor class for RPC methods"""
    def __init__(self, method_name: str):
        self.method_name = method_name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self

        def caller(*args) -> Any:
            return obj._call_method(self.method_name, *args)

        caller.__name__ = self.method_name
        return caller


class PaymentRPC:
    """JSON-RPC client for the payment executor.

    Calls arrive from several worker threads at once, so each thread gets its
    own requests.Session and request ids come from a locked counter.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        """Initialize RPC client, defaulting to the values in settings.conf"""
        self.url = url or settings_conf['payment_rpc_url']
        self.timeout = float(timeout or settings_conf['collaborator_timeout'])

        user = user if user is not None else settings_conf['payment_rpc_user']
        password = password if password is not None else settings_conf['payment_rpc_password']
        self._auth = (user, password) if user else None

        self._local = threading.local()
        self._id_lock = threading.Lock()
        self._request_id = 0

    @property
    def session(self) -> requests.Session:
        """The calling thread's HTTP session."""
        session = getattr(self._local, 'session', None)
        if session is None:
            session = requests.Session()
            if self._auth:
                session.auth = self._auth
            session.headers['content-type'] = 'application/json'
            self._local.session = session
        return session

    def _get_request_id(self) -> int:
        """Get unique request ID"""
        with self._id_lock:
            self._request_id += 1
            return self._request_id

    def _call_method(self, method: str, *args) -> Any:
        """Make RPC call to the payment executor

        Args:
            method: RPC method name
            *args: Method arguments

        Returns:
            Result field of the response

        Raises:
            NodeConnectionError: Connection to the executor failed
            NodeAuthError: Authentication failed
            PaymentError: Executor returned an error
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": [str(arg) if isinstance(arg, Decimal) else arg for arg in args],
            "id": self._get_request_id()
        }

        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)

            if response.status_code == 401:
                raise NodeAuthError("Authentication failed - check payment_rpc_user/payment_rpc_password")

            result = response.json()

            if result.get('error') is not None:
                error = result['error']
                raise PaymentError(
                    error.get('message', 'Unknown error'),
                    error.get('code', -1),
                    method
                )

            response.raise_for_status()
            return result['result']

        except requests.exceptions.Timeout as e:
            raise NodeConnectionError(
                f"Request timed out after {self.timeout} seconds"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise NodeConnectionError(
                f"Failed to connect to payment executor at {self.url}"
            ) from e
        except requests.exceptions.HTTPError as e:
            raise NodeConnectionError(
                f"HTTP error occurred: {str(e)}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise NodeConnectionError(
                f"Request failed: {str(e)}"
            ) from e
        except (KeyError, ValueError) as e:
            raise NodeConnectionError(
                f"Invalid response format: {str(e)}"
            ) from e

    transferfunds = RPCMethod('transferfunds')
    ping = RPCMethod('ping')

    def transfer_funds(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        currency: str,
        idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """Transfer ``amount`` of ``currency`` and return ``{'signature': ...}``.

        The executor moves funds at most once per ``idempotency_key``; a repeat
        call with the same key returns the original transfer's signature.
        """
        args = [from_address, to_address, amount, currency]
        if idempotency_key is not None:
            args.append(idempotency_key)
        result = self.transferfunds(*args)
        if isinstance(result, dict):
            return result
        return {'signature': result}


__all__ = [
    'RPCError',
    'NodeConnectionError',
    'NodeAuthError',
    'PaymentError',
    'RPCMethod',
    'PaymentRPC',
]
