"""
HTTP transport shared by all provider adapters.

This module contains the authenticated JSON client that adapters use to talk to
provider REST APIs, along with the error classes that map HTTP status codes onto
the reconciliation error model.
"""

import json
import ssl
import time
import base64
import logging
from typing import Dict, Any, Optional, Tuple, Union
from urllib.parse import urlparse, urljoin, urlencode
from http.client import HTTPSConnection, HTTPConnection, HTTPException

logger = logging.getLogger(__name__)


class ProviderAPIError(Exception):
    """Raised when a provider API call fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(ProviderAPIError):
    """Raised when the requested provider resource does not exist (HTTP 404)."""

    def __init__(self, message: str):
        super().__init__(message, status=404)


class ProviderAuthenticationError(ProviderAPIError):
    """Raised when authentication to the provider API fails."""

    def __init__(self, message: str):
        super().__init__(message, status=401)


def parse_next_link(link_header: Optional[str]) -> Optional[str]:
    """
    Extract the rel="next" URL from an RFC 8288 Link header.

    Args:
        link_header: Raw Link header value

    Returns:
        Next page URL, or None if there is no next page
    """
    if not link_header:
        return None

    for part in link_header.split(','):
        segments = part.split(';')
        url = segments[0].strip()
        if not (url.startswith('<') and url.endswith('>')):
            continue
        for param in segments[1:]:
            if param.strip().replace(' ', '') in ('rel="next"', "rel=next"):
                return url[1:-1]
    return None


class ProviderClient:
    """
    Authenticated JSON client for a single provider account.

    Handles connection setup, TLS, authentication headers and status-code
    classification. One instance is owned by one adapter.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize provider client.

        Args:
            config: Provider configuration dictionary
        """
        self.config = config
        self.name = config['name']
        self.base_url = config['base_url']
        self.auth_config = config.get('auth') or {}
        self.verify_ssl = config.get('verify_ssl', True)
        self.timeout = config.get('timeout', 30)

        # Parse base URL
        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None

        self.auth_headers = {}
        self._token_expires_at = None

        self._setup_ssl_context()
        self._setup_authentication()

    @property
    def auth_method(self) -> str:
        return (self.auth_config.get('method') or '').lower()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for {self.name}")
            return

        self.ssl_context = ssl.create_default_context()

        truststore_file = self.config.get('truststore_file')
        if truststore_file:
            try:
                self.ssl_context.load_verify_locations(cafile=truststore_file)
                logger.info(f"Loaded PEM truststore: {truststore_file}")
            except (OSError, ssl.SSLError) as e:
                logger.error(f"Failed to load truststore {truststore_file}: {e}")
                raise ProviderAPIError(f"Truststore loading failed: {e}")

        keystore_file = self.config.get('keystore_file')
        if keystore_file:
            try:
                self.ssl_context.load_cert_chain(keystore_file, password=self.config.get('keystore_password'))
                logger.info(f"Loaded PEM client certificate: {keystore_file}")
            except (OSError, ssl.SSLError) as e:
                logger.error(f"Failed to load client certificate {keystore_file}: {e}")
                raise ProviderAPIError(f"Client certificate loading failed: {e}")

    def _setup_authentication(self):
        """Set up authentication headers based on configuration."""
        auth_method = self.auth_method

        if auth_method == 'basic':
            username = self.auth_config.get('username')
            password = self.auth_config.get('password')
            if username and password:
                credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
                self.auth_headers['Authorization'] = f"Basic {credentials}"
                logger.debug(f"Configured Basic authentication for {self.name}")
            else:
                logger.error(f"Basic auth configured but missing username or password for {self.name}")

        elif auth_method in ('token', 'bearer'):
            token = self.auth_config.get('token')
            if token:
                self.auth_headers['Authorization'] = f"Bearer {token}"
                logger.debug(f"Configured Bearer token authentication for {self.name}")
            else:
                logger.error(f"Token auth configured but missing token for {self.name}")

        elif auth_method == 'ssws':
            # Okta API tokens use their own scheme.
            token = self.auth_config.get('token')
            if token:
                self.auth_headers['Authorization'] = f"SSWS {token}"
                logger.debug(f"Configured SSWS token authentication for {self.name}")
            else:
                logger.error(f"SSWS auth configured but missing token for {self.name}")

        elif auth_method == 'oauth2':
            required = ('client_id', 'client_secret', 'token_url')
            if not all(self.auth_config.get(k) for k in required):
                logger.error(f"OAuth2 auth configured but missing required fields "
                             f"(client_id, client_secret, token_url) for {self.name}")
            else:
                logger.debug(f"OAuth2 authentication configured for {self.name}")

        elif auth_method:
            logger.warning(f"Unknown authentication method '{auth_method}' for {self.name}")
        else:
            logger.debug(f"No authentication method configured for {self.name}")

    def _oauth2_get_token(self) -> bool:
        """
        Retrieve OAuth2 access token using client credentials flow.

        Returns:
            True if token was successfully obtained
        """
        client_id = self.auth_config.get('client_id')
        client_secret = self.auth_config.get('client_secret')
        token_url = self.auth_config.get('token_url')
        scope = self.auth_config.get('scope', '')

        if not all([client_id, client_secret, token_url]):
            logger.error(f"OAuth2 configuration incomplete for {self.name}")
            return False

        parsed_token_url = urlparse(token_url)
        if parsed_token_url.scheme == 'https':
            token_conn = HTTPSConnection(parsed_token_url.netloc, context=self.ssl_context, timeout=self.timeout)
        else:
            token_conn = HTTPConnection(parsed_token_url.netloc, timeout=self.timeout)

        token_data = {
            'grant_type': 'client_credentials',
            'client_id': client_id,
            'client_secret': client_secret
        }
        if scope:
            token_data['scope'] = scope

        token_headers = {
            'Content-Type': 'application/x-www-form-urlencoded',
            'Accept': 'application/json'
        }

        try:
            logger.debug(f"Requesting OAuth2 token for {self.name}")
            token_conn.request('POST', parsed_token_url.path or '/', urlencode(token_data), token_headers)

            response = token_conn.getresponse()
            response_data = response.read().decode('utf-8')

            if response.status != 200:
                logger.error(f"OAuth2 token request failed for {self.name}: {response.status} {response.reason}")
                return False

            token_response = json.loads(response_data)
            access_token = token_response.get('access_token')
            if not access_token:
                logger.error(f"OAuth2 response missing access_token for {self.name}")
                return False

            self.auth_headers['Authorization'] = f"Bearer {access_token}"

            expires_in = token_response.get('expires_in')
            if expires_in:
                self._token_expires_at = time.time() + int(expires_in) - 60

            logger.info(f"Successfully obtained OAuth2 token for {self.name}")
            return True

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in OAuth2 token response for {self.name}: {e}")
            return False
        except (HTTPException, OSError) as e:
            logger.error(f"OAuth2 token request error for {self.name}: {e}")
            return False
        finally:
            token_conn.close()

    def _is_oauth2_token_valid(self) -> bool:
        if self._token_expires_at is None:
            return 'Authorization' in self.auth_headers
        return time.time() < self._token_expires_at

    def authenticate(self) -> bool:
        """
        Perform any additional authentication steps (OAuth2 token retrieval).

        Returns:
            True if authentication successful
        """
        if self.auth_method == 'oauth2':
            if self._is_oauth2_token_valid():
                logger.debug(f"OAuth2 token still valid for {self.name}")
                return True
            return self._oauth2_get_token()

        if self.auth_method in ('', 'basic', 'token', 'bearer', 'ssws'):
            return True

        logger.warning(f"Unknown authentication method '{self.auth_method}' for {self.name}")
        return False

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def _build_path(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Build the request target from a relative path or an absolute URL."""
        if path.startswith('http://') or path.startswith('https://'):
            parsed = urlparse(path)
            if parsed.netloc != self.host:
                raise ProviderAPIError(f"Refusing to follow URL on foreign host {parsed.netloc} for {self.name}")
            full_path = parsed.path
            query = parsed.query
        else:
            full_path = urljoin(self.base_path + '/', path.lstrip('/'))
            query = ''

        if params:
            encoded = urlencode({k: v for k, v in params.items() if v is not None and v != ''}, doseq=True)
            query = f"{query}&{encoded}" if query and encoded else (query or encoded)

        return f"{full_path}?{query}" if query else full_path

    def _send(self, method: str, path: str, body: Optional[Any] = None,
              params: Optional[Dict[str, Any]] = None,
              headers: Optional[Dict[str, str]] = None) -> Tuple[Any, Dict[str, str]]:
        """
        Send a request and classify the response.

        Returns:
            Tuple of (decoded body, response headers)

        Raises:
            NotFoundError: On HTTP 404
            ProviderAuthenticationError: On HTTP 401 after any token refresh
            ProviderAPIError: On any other failure
        """
        target = self._build_path(path, params)

        request_body = None
        base_headers = {'Accept': 'application/json'}
        if body is not None:
            request_body = json.dumps(body)
            base_headers['Content-Type'] = 'application/json'
        if headers:
            base_headers.update(headers)

        refreshed = False
        while True:
            request_headers = dict(base_headers)
            request_headers.update(self.auth_headers)

            try:
                conn = self._get_connection()
                logger.debug(f"Making {method} request to {self.host}{target}")
                conn.request(method, target, request_body, request_headers)

                response = conn.getresponse()
                response_data = response.read().decode('utf-8')
                response_headers = {k.lower(): v for k, v in response.getheaders()}
            except (HTTPException, OSError) as e:
                self.close_connection()
                raise ProviderAPIError(f"Connection error to {self.name}: {e}")

            logger.debug(f"Response status: {response.status} {response.reason}")

            if response.status == 401 and self.auth_method == 'oauth2' and not refreshed:
                logger.info(f"401 error received, attempting to refresh OAuth2 token for {self.name}")
                refreshed = True
                if self._oauth2_get_token():
                    continue

            break

        if response.status == 404:
            raise NotFoundError(f"{method} {target} on {self.name}: not found")
        if response.status == 401:
            raise ProviderAuthenticationError(f"Authentication failed for {self.name}")
        if response.status >= 400:
            detail = response_data[:500] if response_data else response.reason
            raise ProviderAPIError(f"HTTP {response.status} from {self.name} for {method} {target}: {detail}",
                                   status=response.status)

        if not response_data:
            return {}, response_headers

        try:
            return json.loads(response_data), response_headers
        except json.JSONDecodeError as e:
            raise ProviderAPIError(f"Invalid JSON response from {self.name}: {e}", status=response.status)

    def request(self, method: str, path: str, body: Optional[Any] = None,
                params: Optional[Dict[str, Any]] = None,
                headers: Optional[Dict[str, str]] = None) -> Any:
        """
        Make an HTTP request to the provider API.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            path: Endpoint path relative to base_url, or an absolute URL on the same host
            body: JSON-serializable request body
            params: Query string parameters
            headers: Additional headers

        Returns:
            Decoded JSON response ({} when the body is empty)
        """
        data, _ = self._send(method, path, body=body, params=params, headers=headers)
        return data

    def request_page(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Tuple[Any, Optional[str]]:
        """
        Fetch one page of a Link-header paginated listing.

        Returns:
            Tuple of (decoded body, next page URL or None)
        """
        data, headers = self._send(method, path, params=params)
        return data, parse_next_link(headers.get('link'))

    def get_all_pages(self, path: str, params: Optional[Dict[str, Any]] = None) -> list:
        """Collect every item of a Link-header paginated list endpoint."""
        items = []
        page, next_url = self.request_page('GET', path, params=params)
        items.extend(page or [])
        while next_url:
            page, next_url = self.request_page('GET', next_url)
            items.extend(page or [])
        return items

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except OSError as e:
                logger.warning(f"Error closing connection for {self.name}: {e}")
            finally:
                self.connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_connection()
