"""Vault HTTP API transport."""
import json
import logging
from typing import Any
from typing import Optional
from typing import Union

import requests
from requests.adapters import HTTPAdapter

from vault_cert_manager import errors
from vault_cert_manager._internal import constants

logger = logging.getLogger(__name__)

# Request paths whose bodies carry secrets and are never logged.
_SENSITIVE_PREFIXES = ('auth/',)


class VaultNetwork:
    """Wrapper around requests talking to the Vault HTTP API.

    Builds ``/v1/`` URLs, adds the user agent and the Vault token, and
    turns error responses into `.BackendResponseError`.

    :param str address: Vault server address, e.g. ``https://vault:8200``
    :param verify: Whether to verify TLS certificates, or a CA bundle path.
    :type verify: `bool` or `str`
    :param tuple cert: Optional client certificate and key paths.
    :param str user_agent: String to send as User-Agent header.
    :param float timeout: Default timeout for requests.

    """
    TOKEN_HEADER = 'X-Vault-Token'
    JSON_CONTENT_TYPE = 'application/json'

    def __init__(self, address: str, verify: Union[bool, str] = True,
                 cert: Optional[tuple[str, str]] = None,
                 user_agent: str = 'vault-cert-manager',
                 timeout: float = constants.VAULT_TIMEOUT) -> None:
        self.address = address.rstrip('/')
        self.verify = verify
        self.cert = cert
        self.user_agent = user_agent
        self.token: Optional[str] = None
        self.timeout = timeout
        self.session = requests.Session()
        adapter = HTTPAdapter()
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def close(self) -> None:
        """Release pooled connections."""
        self.session.close()

    def url(self, path: str) -> str:
        """Absolute URL of an API path relative to ``/v1/``."""
        return '{0}/v1/{1}'.format(self.address, path.lstrip('/'))

    @classmethod
    def _check_response(cls, response: requests.Response) -> dict[str, Any]:
        """Check response status and decode its JSON body.

        :raises .BackendResponseError: if Vault returned a non-2xx status
        :raises ValueError: if a successful response body is not a JSON object

        """
        try:
            jobj = response.json() if response.content else {}
        except ValueError:
            jobj = None

        if not response.ok:
            messages = []
            if isinstance(jobj, dict):
                messages = [str(message) for message in jobj.get('errors') or []]
            elif response.text:
                messages = [response.text.strip()]
            raise errors.BackendResponseError(response.status_code, messages)

        if not isinstance(jobj, dict):
            raise ValueError(
                f'Unexpected response from {response.url}: not a JSON object')
        return jobj

    def _send_request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """Send HTTP request.

        For allowed parameters please see `requests.request`. Pass
        ``with_token=False`` to omit the Vault token, as login calls do.

        :param str method: method for the new `requests.Request` object
        :param str path: API path relative to ``/v1/``

        :raises requests.exceptions.RequestException: in case of any problems

        :returns: HTTP Response
        :rtype: `requests.Response`

        """
        url = self.url(path)
        with_token = kwargs.pop('with_token', True)
        if 'data' in kwargs and not path.startswith(_SENSITIVE_PREFIXES):
            logger.debug('Sending %s request to %s:\n%s', method, url, kwargs['data'])
        else:
            logger.debug('Sending %s request to %s.', method, url)
        kwargs['verify'] = self.verify
        if self.cert is not None:
            kwargs['cert'] = self.cert
        kwargs.setdefault('headers', {})
        kwargs['headers'].setdefault('User-Agent', self.user_agent)
        if self.token and with_token:
            kwargs['headers'][self.TOKEN_HEADER] = self.token
        kwargs.setdefault('timeout', self.timeout)

        response = self.session.request(method, url, **kwargs)
        logger.debug('Received response from %s: HTTP %d', url, response.status_code)
        return response

    def get(self, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send GET request and check response."""
        return self._check_response(self._send_request('GET', path, **kwargs))

    def post(self, path: str, obj: Optional[dict[str, Any]] = None,
             **kwargs: Any) -> dict[str, Any]:
        """POST a JSON object and check response."""
        kwargs.setdefault('headers', {})
        kwargs['headers']['Content-Type'] = self.JSON_CONTENT_TYPE
        kwargs['data'] = json.dumps(obj or {})
        return self._check_response(self._send_request('POST', path, **kwargs))
