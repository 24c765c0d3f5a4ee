"""Fleet wide view over every running certificate manager.

Peers are discovered through the Consul catalog, polled concurrently
for their status and sent rotation requests on behalf of the caller.

"""
import concurrent.futures
import functools
import http.client as http_client
import logging
import urllib.parse
from typing import Any
from typing import NamedTuple
from typing import Optional

import consul
import requests

from vault_cert_manager import errors
from vault_cert_manager._internal import constants
from vault_cert_manager._internal import server

logger = logging.getLogger(__name__)


class PeerRef(NamedTuple):
    """Where a peer instance listens."""
    node: str
    address: str
    port: int

    @property
    def endpoint(self) -> str:
        """``host:port`` of the peer API."""
        host = f'[{self.address}]' if ':' in self.address else self.address
        return f'{host}:{self.port}'

    @property
    def base_url(self) -> str:
        """Root URL of the peer API."""
        return f'http://{self.endpoint}'


class PeerStatus(NamedTuple):
    """Result of polling one peer.

    address is the ``host:port`` the peer was polled at.

    """
    node: str
    address: str
    certs: list[dict[str, Any]]
    error: Optional[str] = None

    def to_json(self) -> dict[str, Any]:
        """JSON serializable form."""
        return self._asdict()


class ProxyResponse(NamedTuple):
    """Response of a peer, relayed as is."""
    status_code: int
    body: bytes
    content_type: str


def make_consul_client(address: str) -> consul.Consul:
    """Build a Consul client for an address like ``http://localhost:8500``."""
    parsed = urllib.parse.urlsplit(address if '://' in address else 'http://' + address)
    scheme = parsed.scheme or 'http'
    port = parsed.port or (443 if scheme == 'https' else 8500)
    return consul.Consul(host=parsed.hostname or 'localhost', port=port, scheme=scheme)


class FleetAggregator:
    """Polls and drives every instance registered under a Consul service.

    :param consul.Consul client: Consul API client
    :param str service_name: service the instances register under
    :param float poll_timeout: timeout of each status request
    :param float rotate_timeout: timeout of each forwarded rotation

    """
    def __init__(self, client: consul.Consul, service_name: str,
                 poll_timeout: float = constants.PEER_POLL_TIMEOUT,
                 rotate_timeout: float = constants.CLI_DEFAULTS['timeout']) -> None:
        self.client = client
        self.service_name = service_name
        self.poll_timeout = poll_timeout
        self.rotate_timeout = rotate_timeout

    def discover_peers(self) -> list[PeerRef]:
        """List the instances currently registered in Consul.

        :raises .errors.DiscoveryError: if Consul cannot be queried

        """
        try:
            _, nodes = self.client.catalog.service(self.service_name)
        except Exception as e:  # pylint: disable=broad-except
            raise errors.DiscoveryError(
                "Could not query service '{0}' in Consul: {1}".format(self.service_name, e))

        peers = []
        for entry in nodes or []:
            peers.append(PeerRef(
                node=entry['Node'],
                address=entry.get('ServiceAddress') or entry.get('Address') or '',
                port=int(entry['ServicePort']),
            ))
        logger.debug('Discovered %d instances of %s', len(peers), self.service_name)
        return peers

    def poll_all(self) -> list[PeerStatus]:
        """Fetch the status of every peer concurrently.

        A failing peer only affects its own entry.

        :returns: one entry per peer, sorted by node name
        :rtype: list

        :raises .errors.DiscoveryError: if discovery failed

        """
        peers = self.discover_peers()
        if not peers:
            return []
        with concurrent.futures.ThreadPoolExecutor(
                max_workers=len(peers), thread_name_prefix='poll') as executor:
            results = list(executor.map(self._poll, peers))
        return sorted(results, key=lambda result: result.node)

    def _poll(self, peer: PeerRef) -> PeerStatus:
        url = peer.base_url + constants.PEER_STATUS_PATH
        try:
            response = requests.request('GET', url, timeout=self.poll_timeout)
        except requests.exceptions.RequestException as error:
            return PeerStatus(peer.node, peer.endpoint, [], str(error))
        if response.status_code != http_client.OK:
            return PeerStatus(peer.node, peer.endpoint, [],
                              f'status {response.status_code}: {response.text.strip()}')
        try:
            certs = response.json()
        except ValueError as error:
            return PeerStatus(peer.node, peer.endpoint, [], f'invalid response: {error}')
        if not isinstance(certs, list):
            return PeerStatus(peer.node, peer.endpoint, [], 'invalid response: not a list')
        return PeerStatus(peer.node, peer.endpoint, certs)

    def find_peer(self, node: str) -> PeerRef:
        """Discover peers and return the one running on node.

        :raises .errors.DiscoveryError: if discovery failed
        :raises .errors.PeerNotFound: if no peer runs on node

        """
        for peer in self.discover_peers():
            if peer.node == node:
                return peer
        raise errors.PeerNotFound(f'node {node} not found')

    def proxy_rotate(self, node: str, cert_name: str = 'all', method: str = 'POST',
                     body: bytes = b'') -> ProxyResponse:
        """Forward a rotation request to the peer running on node.

        :param str node: node name of the peer
        :param str cert_name: certificate to rotate, ``all`` for every one
        :param str method: HTTP method of the original request
        :param bytes body: body of the original request

        :returns: the peer response, status and body unchanged
        :rtype: ProxyResponse

        :raises .errors.DiscoveryError: if discovery failed
        :raises .errors.PeerNotFound: if no peer runs on node
        :raises .errors.ProxyError: if the peer could not be reached

        """
        peer = self.find_peer(node)
        url = '{0}{1}/{2}'.format(peer.base_url, constants.PEER_ROTATE_PATH,
                                  urllib.parse.quote(cert_name or 'all', safe=''))
        logger.info('Forwarding rotation of %s to %s', cert_name or 'all', url)
        try:
            response = requests.request(method, url, data=body or None,
                                        timeout=self.rotate_timeout)
        except requests.exceptions.RequestException as error:
            raise errors.ProxyError(f'forwarding to {node} failed: {error}')
        return ProxyResponse(
            status_code=response.status_code,
            body=response.content,
            content_type=response.headers.get('Content-Type') or server.JSON_CONTENT_TYPE,
        )


class AggregatorRequestHandler(server.JSONRequestHandler):
    """Serves the fleet API.

    - ``GET /api/status``: status of every peer
    - ``POST /api/rotate/<node>``: rotate every certificate of a peer
    - ``POST /api/rotate/<node>/<name>``: rotate one certificate of a peer

    """
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.aggregator: FleetAggregator = kwargs.pop('aggregator')
        super().__init__(*args, **kwargs)

    def do_GET(self) -> None:  # pylint: disable=invalid-name,missing-function-docstring
        parts = self.request_path()
        if parts == constants.PEER_STATUS_PATH.strip('/').split('/'):
            try:
                peers = self.aggregator.poll_all()
            except errors.DiscoveryError as error:
                logger.error('%s', error)
                self.send_error_json(http_client.INTERNAL_SERVER_ERROR, str(error))
                return
            self.send_json(http_client.OK, [peer.to_json() for peer in peers])
        elif self._rotate_args(parts) is not None:
            self.handle_405()
        else:
            self.handle_404()

    def do_POST(self) -> None:  # pylint: disable=invalid-name,missing-function-docstring
        args = self._rotate_args(self.request_path())
        if args is None:
            self.handle_404()
            return
        node, cert_name = args
        if not node:
            self.send_error_json(http_client.BAD_REQUEST, 'node name is required')
            return
        try:
            response = self.aggregator.proxy_rotate(
                node, cert_name, method=self.command, body=self.read_body())
        except errors.PeerNotFound as error:
            self.send_error_json(http_client.NOT_FOUND, str(error))
        except errors.DiscoveryError as error:
            self.send_error_json(http_client.INTERNAL_SERVER_ERROR, str(error))
        except errors.ProxyError as error:
            logger.warning('%s', error)
            self.send_error_json(http_client.BAD_GATEWAY, str(error))
        else:
            self.send_body(response.status_code, response.body, response.content_type)

    @staticmethod
    def _rotate_args(parts: list[str]) -> Optional[tuple[str, str]]:
        prefix = constants.PEER_ROTATE_PATH.strip('/').split('/')
        if parts[:len(prefix)] != prefix or len(parts) > len(prefix) + 2:
            return None
        rest = parts[len(prefix):] + ['', '']
        return rest[0], rest[1] or 'all'

    @classmethod
    def partial_init(cls, aggregator: FleetAggregator
                     ) -> 'functools.partial[AggregatorRequestHandler]':
        """Partially initialize this handler."""
        return functools.partial(cls, aggregator=aggregator)


def make_aggregator_server(aggregator: FleetAggregator, port: int,
                           host: str = '') -> server.HTTPServer:
    """Bind the fleet API to host:port."""
    return server.HTTPServer((host, port), AggregatorRequestHandler.partial_init(aggregator))
