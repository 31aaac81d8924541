"""
Credential keyrings assembled from pull secrets, docker config documents and
credential providers.

A keyring answers which credentials may be used for a repository. Every
answer is a LazyCredential; nothing is decoded, no credential helper is run
and no provider is called until the credential is actually needed.
"""
import abc
from functools import partial
import json
import logging
import os
import re
import subprocess
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from .exceptions import AuthenticationError, ImagePullerError, InvalidSecretError
from .models import (
    DEFAULT_REGISTRY_HOST,
    DEFAULT_TIMEOUT,
    SECRET_DATA_KEYS,
    Credential,
    PullSecret,
)
from .providers import CredentialProvider, ProviderRegistry, match_host

LOGGER = logging.getLogger(__name__)

DOCKER_HUB_KEYS = ("index.docker.io", "registry-1.docker.io")
_LEGACY_PATH_RE = re.compile(r"^/v[12](?=/|$)")


class LazyCredential:
    """
    A credential that is materialized on first use and remembered after.
    """

    def __init__(self, factory: Callable[[], Credential], source: str = "") -> None:
        self._factory = factory
        self._credential: Optional[Credential] = None
        self.source = source

    def provide(self) -> Credential:
        """
        Returns the credential, creating it if this is the first call.
        """
        if self._credential is None:
            self._credential = self._factory()
        return self._credential

    def __repr__(self) -> str:
        return "LazyCredential({!r})".format(self.source)


def query_credential_helper(helper: str, server: str) -> Dict[str, str]:
    """
    Ask docker-credential-<helper> for the credentials of server.
    """
    try:
        proc = subprocess.run(
            ["docker-credential-" + helper, "get"],
            input=server.encode("utf-8"),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=DEFAULT_TIMEOUT,
            check=True,
        )
        return json.loads(proc.stdout.decode("utf-8"))
    except (OSError, subprocess.SubprocessError, ValueError) as exc:
        raise AuthenticationError(
            "credential helper {} failed for {}: {}".format(helper, server, exc)
        ) from exc


def _helper_credential(helper: str, server: str) -> Credential:
    result = query_credential_helper(helper, server)
    if not isinstance(result, Mapping):
        raise AuthenticationError(
            "credential helper {} returned no credentials for {}".format(helper, server)
        )
    return Credential(
        username=result.get("Username", ""), password=result.get("Secret", "")
    )


def _provider_credential(provider: CredentialProvider) -> Credential:
    try:
        return provider.provide()
    except ImagePullerError:
        raise
    except Exception as exc:
        raise AuthenticationError(
            "credential provider {} failed: {}".format(type(provider).__name__, exc)
        ) from exc


def _entry_credential(entry: Mapping[str, Any]) -> Credential:
    return Credential(
        username=entry.get("username") or "",
        password=entry.get("password") or "",
        auth=entry.get("auth") or "",
        server_address=entry.get("serveraddress") or "",
    )


def normalize_key(key: str, strip_api_prefix: bool = True) -> str:
    """
    Reduce a docker config key or a repository name to "host[:port][/path]".
    The scheme is dropped and Docker Hub hosts are folded into docker.io. For
    config keys the legacy "/v1/" and "/v2/" API prefixes are dropped too.
    """
    rest = key.strip()
    scheme_end = rest.find("://")
    if scheme_end != -1:
        rest = rest[scheme_end + 3 :]

    host, _, path = rest.partition("/")
    host = host.lower()
    if host in DOCKER_HUB_KEYS:
        host = DEFAULT_REGISTRY_HOST

    path = "/" + path
    if strip_api_prefix:
        path = _LEGACY_PATH_RE.sub("", path)
    path = "/".join(part for part in path.split("/") if part)
    return host + "/" + path if path else host


def key_matches(key: str, target: str) -> bool:
    """
    Returns true if the normalized keyring key covers the normalized target
    repository.
    """
    key_host, _, key_path = key.partition("/")
    target_host, _, target_path = target.partition("/")
    if not match_host(key_host, target_host):
        return False
    return (
        not key_path
        or target_path == key_path
        or target_path.startswith(key_path + "/")
    )


class Keyring(metaclass=abc.ABCMeta):
    """
    Answers which credentials apply to a repository.
    """

    @abc.abstractmethod
    def lookup(self, repository: str) -> Tuple[List[LazyCredential], bool]:
        """
        Returns the credentials for the host qualified repository in the
        order they should be tried, and whether any source claimed it.
        """


class BasicKeyring(Keyring):
    """
    A keyring built from docker config documents. More specific keys sort
    ahead of less specific ones.
    """

    def __init__(self) -> None:
        self._index: List[str] = []
        self._creds: Dict[str, List[LazyCredential]] = {}

    def add(self, key: str, credential: LazyCredential) -> None:
        """
        Register a credential under a docker config key.
        """
        key = normalize_key(key)
        if not key:
            raise InvalidSecretError("empty registry key in {}".format(credential.source))
        if key not in self._creds:
            self._creds[key] = []
            self._index.append(key)
            self._index.sort(reverse=True)
        self._creds[key].append(credential)

    def add_docker_config(self, config: Any, source: str = "") -> None:
        """
        Register every registry of a docker config document. Both the
        config.json layout and the legacy flat .dockercfg layout are accepted.
        """
        if not isinstance(config, Mapping):
            raise InvalidSecretError("{} is not a docker config object".format(source))

        if {"auths", "credHelpers", "credsStore"} & set(config):
            auths = config.get("auths") or {}
            helpers = config.get("credHelpers") or {}
            store = config.get("credsStore")
        else:
            auths, helpers, store = config, {}, None
        if not isinstance(auths, Mapping) or not isinstance(helpers, Mapping):
            raise InvalidSecretError("{} has a malformed docker config".format(source))

        for server, helper in helpers.items():
            self.add(
                server,
                LazyCredential(partial(_helper_credential, helper, server), source),
            )

        for server, entry in auths.items():
            if server in helpers:
                continue
            if not isinstance(entry, Mapping):
                raise InvalidSecretError(
                    "{} has a malformed entry for {}".format(source, server)
                )
            if store and not (entry.get("auth") or entry.get("username")):
                factory = partial(_helper_credential, store, server)
            else:
                factory = partial(_entry_credential, entry)
            self.add(server, LazyCredential(factory, source))

    def lookup(self, repository: str) -> Tuple[List[LazyCredential], bool]:
        target = normalize_key(repository, strip_api_prefix=False)
        found: List[LazyCredential] = []
        for key in self._index:
            if key_matches(key, target):
                found.extend(self._creds[key])
        return found, bool(found)


class ProvidersKeyring(Keyring):
    """
    A keyring answering from the enabled providers of a ProviderRegistry.
    """

    def __init__(self, providers: ProviderRegistry) -> None:
        self.providers = providers

    def lookup(self, repository: str) -> Tuple[List[LazyCredential], bool]:
        host = normalize_key(repository, strip_api_prefix=False).partition("/")[0]
        found = [
            LazyCredential(
                partial(_provider_credential, provider), type(provider).__name__
            )
            for provider in self.providers
            if provider.enabled() and provider.matches(host)
        ]
        return found, bool(found)


class UnionKeyring(Keyring):
    """
    Concatenates the answers of several keyrings in order.
    """

    def __init__(self, keyrings: Sequence[Keyring]) -> None:
        self.keyrings = list(keyrings)

    def lookup(self, repository: str) -> Tuple[List[LazyCredential], bool]:
        found: List[LazyCredential] = []
        for keyring in self.keyrings:
            creds, _ = keyring.lookup(repository)
            found.extend(creds)
        return found, bool(found)


def _decode_secret(secret: PullSecret) -> Optional[Any]:
    payload = secret.payload()
    if payload is None:
        if secret.type in SECRET_DATA_KEYS:
            raise InvalidSecretError(
                "secret {} has no {} data".format(secret.name, SECRET_DATA_KEYS[secret.type])
            )
        return None
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidSecretError(
            "secret {} does not hold a docker config document".format(secret.name)
        ) from exc


def build_keyring(
    secrets: Iterable[Union[PullSecret, Mapping[str, Any]]],
    providers: Optional[ProviderRegistry] = None,
    docker_config: Optional[Mapping[str, Any]] = None,
) -> Keyring:
    """
    Build the keyring for one pull: credentials from the pull secrets first,
    then from the local docker config, then from the providers.
    """
    secret_keyring = BasicKeyring()
    for secret in secrets:
        if not isinstance(secret, PullSecret):
            secret = PullSecret.from_dict(secret)
        config = _decode_secret(secret)
        if config is None:
            LOGGER.warning("Skipping secret %s of type %s", secret.name, secret.type)
            continue
        secret_keyring.add_docker_config(config, source="secret/" + secret.name)

    keyrings: List[Keyring] = [secret_keyring]
    if docker_config is not None:
        local_keyring = BasicKeyring()
        local_keyring.add_docker_config(docker_config, source="docker config")
        keyrings.append(local_keyring)
    if providers is not None:
        keyrings.append(ProvidersKeyring(providers))
    return UnionKeyring(keyrings)


def load_docker_config(path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Load the local docker config.json. Defaults to $DOCKER_CONFIG/config.json,
    falling back to ~/.docker/config.json. Returns None if the file does not
    exist.
    """
    if path is None:
        config_dir = os.environ.get("DOCKER_CONFIG") or os.path.join(
            os.path.expanduser("~"), ".docker"
        )
        path = os.path.join(config_dir, "config.json")

    try:
        with open(path, "r") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        raise InvalidSecretError("cannot read docker config {}".format(path)) from exc
