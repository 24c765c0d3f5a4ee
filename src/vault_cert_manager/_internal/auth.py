"""Vault authentication strategies.

Each supported method turns its configuration into a Vault client
token. `obtain_credential` dispatches on the single method present in
an `.AuthConfig`; strategies never retry, the caller decides what to do
with an `.AuthError`.

"""
import json
import logging
import time
from typing import Any

import google.auth
import google.auth.exceptions
from google.auth import jwt as google_jwt
from google.oauth2 import service_account
import requests

from vault_cert_manager import crypto_util
from vault_cert_manager import errors
from vault_cert_manager._internal import constants
from vault_cert_manager._internal import network as network_lib
from vault_cert_manager.configuration import AppRoleAuth
from vault_cert_manager.configuration import AuthConfig
from vault_cert_manager.configuration import GCPAuth
from vault_cert_manager.configuration import TLSAuth
from vault_cert_manager.configuration import TokenAuth

logger = logging.getLogger(__name__)


def obtain_credential(auth_config: AuthConfig, network: network_lib.VaultNetwork) -> str:
    """Authenticate against Vault.

    :param .AuthConfig auth_config: authentication settings
    :param .VaultNetwork network: transport to the Vault server

    :returns: Vault client token
    :rtype: str

    :raises .errors.AuthError: if no token could be obtained

    """
    try:
        method = auth_config.method
    except errors.ConfigurationError as error:
        raise errors.AuthError(errors.AuthError.CONFIG_INVALID, str(error))

    logger.debug('Authenticating to %s with the %s method', network.address, method)
    if method == 'token':
        return _token(auth_config.token)
    elif method == 'approle':
        return _approle(auth_config.approle, network)
    elif method == 'gcp':
        return _gcp(auth_config.gcp, network)
    elif method == 'tls':
        return _tls(auth_config.tls, network)
    raise errors.AuthError(
        errors.AuthError.CONFIG_INVALID, f'unsupported authentication method {method}')


def _token(config: TokenAuth) -> str:
    if not config.value:
        raise errors.AuthError(errors.AuthError.CONFIG_INVALID, 'token is empty')
    return config.value


def _approle(config: AppRoleAuth, network: network_lib.VaultNetwork) -> str:
    if config.secret_id_file:
        try:
            with open(config.secret_id_file) as secret_file:
                secret_id = secret_file.read().strip()
        except OSError as error:
            raise errors.AuthError(
                errors.AuthError.CONFIG_INVALID,
                f'unable to read secret_id_file {config.secret_id_file}: {error}')
    elif config.secret_id:
        secret_id = config.secret_id
    else:
        raise errors.AuthError(
            errors.AuthError.CONFIG_INVALID, 'approle requires secret_id or secret_id_file')

    return _login(network, config.mount_path or constants.DEFAULT_APPROLE_MOUNT,
                  {'role_id': config.role_id, 'secret_id': secret_id})


def _gcp(config: GCPAuth, network: network_lib.VaultNetwork) -> str:
    if config.type == 'gce':
        jwt = _gce_identity_token()
    elif config.type == 'iam':
        jwt = _iam_identity_token(config)
    else:
        raise errors.AuthError(
            errors.AuthError.CONFIG_INVALID, f'unknown gcp auth type {config.type!r}')
    return _login(network, config.mount_path or constants.DEFAULT_GCP_MOUNT,
                  {'role': config.role, 'jwt': jwt})


def _gce_identity_token() -> str:
    """Fetch a signed instance identity token from the GCE metadata server."""
    url = constants.GCE_METADATA_URL + constants.GCE_IDENTITY_PATH
    params = {'audience': constants.GCP_JWT_AUDIENCE, 'format': 'full'}
    try:
        response = requests.get(url, params=params, headers=constants.GCE_METADATA_HEADERS,
                                timeout=constants.GCE_METADATA_TIMEOUT)
    except requests.exceptions.RequestException as error:
        raise errors.AuthError(
            errors.AuthError.NETWORK_FAILURE, f'unable to reach GCE metadata server: {error}')
    if response.status_code != 200:
        raise errors.AuthError(
            errors.AuthError.NETWORK_FAILURE,
            f'GCE metadata server returned {response.status_code}: {response.text.strip()}')
    return response.text.strip()


def _iam_identity_token(config: GCPAuth) -> str:
    """Sign a JWT with a service account key and exchange it for a token."""
    token_uri = constants.GOOGLE_TOKEN_URI
    try:
        if config.credentials_file:
            with open(config.credentials_file) as key_file:
                info = json.load(key_file)
            token_uri = info.get('token_uri') or token_uri
            credentials = service_account.Credentials.from_service_account_info(info)
        else:
            credentials, _ = google.auth.default()
    except (OSError, ValueError, google.auth.exceptions.GoogleAuthError) as error:
        raise errors.AuthError(
            errors.AuthError.CONFIG_INVALID, f'unable to load GCP credentials: {error}')
    if not isinstance(credentials, service_account.Credentials):
        raise errors.AuthError(
            errors.AuthError.CONFIG_INVALID,
            'GCP iam authentication requires service account credentials')

    email = config.service_account or credentials.service_account_email
    now = int(time.time())
    payload = {
        'iss': email,
        'aud': constants.GCP_JWT_AUDIENCE,
        'iat': now,
        'exp': now + int(config.jwt_exp.total_seconds()),
    }
    assertion = google_jwt.encode(credentials.signer, payload)

    try:
        response = requests.post(token_uri, data={
            'grant_type': constants.JWT_BEARER_GRANT_TYPE,
            'assertion': assertion,
        }, timeout=constants.GCE_METADATA_TIMEOUT)
    except requests.exceptions.RequestException as error:
        raise errors.AuthError(
            errors.AuthError.NETWORK_FAILURE, f'unable to reach {token_uri}: {error}')
    try:
        token = response.json().get('access_token') if response.ok else None
    except ValueError:
        token = None
    if not token:
        raise errors.AuthError(
            errors.AuthError.BACKEND_REJECTED,
            f'{token_uri} returned {response.status_code} without an access token')
    return token


def _tls(config: TLSAuth, network: network_lib.VaultNetwork) -> str:
    try:
        crypto_util.verify_cert_matches_priv_key(config.cert_file, config.key_file)
    except errors.Error as error:
        raise errors.AuthError(errors.AuthError.CONFIG_INVALID, str(error))

    body = {'name': config.name} if config.name else {}
    tls_network = network_lib.VaultNetwork(
        network.address, verify=network.verify, cert=(config.cert_file, config.key_file),
        user_agent=network.user_agent, timeout=network.timeout)
    try:
        return _login(tls_network, config.mount_path or constants.DEFAULT_TLS_MOUNT, body)
    finally:
        tls_network.close()


def _login(network: network_lib.VaultNetwork, mount: str, body: dict[str, Any]) -> str:
    path = f'auth/{mount}/login'
    try:
        response = network.post(path, body, with_token=False)
    except errors.BackendResponseError as error:
        raise errors.AuthError(errors.AuthError.BACKEND_REJECTED, f'{path}: {error}')
    except (requests.exceptions.RequestException, ValueError) as error:
        raise errors.AuthError(errors.AuthError.NETWORK_FAILURE, f'{path}: {error}')

    token = (response.get('auth') or {}).get('client_token')
    if not token:
        raise errors.AuthError(
            errors.AuthError.BACKEND_REJECTED, 'no authentication information returned')
    logger.debug('Obtained Vault token through %s', path)
    return token
