"""
Credential providers that synthesize registry credentials on demand, and the
registry value the keyring consults them through.
"""
import abc
import fnmatch
import logging
import os
from typing import Iterable, Iterator, List, Optional

import requests

from .exceptions import AuthenticationError
from .models import DEFAULT_TIMEOUT, Credential

LOGGER = logging.getLogger(__name__)


def _split_port(host: str) -> List[str]:
    host, _, port = host.partition(":")
    return [host, port]


def match_host(pattern: str, host: str) -> bool:
    """
    Returns true if host matches pattern. Each dot separated label of the
    pattern is a glob (e.g. "*.gcr.io"), label counts must agree and ports
    must be equal.
    """
    pattern_host, pattern_port = _split_port(pattern.lower())
    target_host, target_port = _split_port(host.lower())
    if pattern_port != target_port:
        return False

    pattern_labels = pattern_host.split(".")
    target_labels = target_host.split(".")
    if len(pattern_labels) != len(target_labels):
        return False
    return all(
        fnmatch.fnmatchcase(label, glob)
        for glob, label in zip(pattern_labels, target_labels)
    )


class CredentialProvider(metaclass=abc.ABCMeta):
    """
    A source of credentials for the registry hosts it recognizes. provide()
    may be expensive and is only called when a credential is about to be
    used.
    """

    def enabled(self) -> bool:
        """
        Returns true if the provider can work in this environment. Must be
        cheap and must not touch the network.
        """
        return True

    @abc.abstractmethod
    def matches(self, host: str) -> bool:
        """
        Returns true if the provider serves credentials for host.
        """

    @abc.abstractmethod
    def provide(self) -> Credential:
        """
        Returns a fresh credential.
        """


class ProviderRegistry:
    """
    An ordered set of credential providers handed to the keyring.
    """

    def __init__(self, providers: Iterable[CredentialProvider] = ()) -> None:
        self._providers: List[CredentialProvider] = list(providers)

    @classmethod
    def default(cls) -> "ProviderRegistry":
        """
        Returns a registry holding the built in cloud providers.
        """
        return cls([GoogleMetadataProvider()])

    def register(self, provider: CredentialProvider) -> None:
        """
        Add a provider. Providers are consulted in registration order.
        """
        self._providers.append(provider)

    def __iter__(self) -> Iterator[CredentialProvider]:
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)


class GoogleMetadataProvider(CredentialProvider):
    """
    Supplies credentials for Google Container Registry and Artifact Registry
    from the access token of the instance's default service account.
    """

    HOST_PATTERNS = (
        "gcr.io",
        "*.gcr.io",
        "*.pkg.dev",
        "container.cloud.google.com",
        "*.container.cloud.google.com",
    )
    METADATA_HOST = "metadata.google.internal"
    TOKEN_PATH = "/computeMetadata/v1/instance/service-accounts/default/token"
    PRODUCT_NAME_FILE = "/sys/class/dmi/id/product_name"
    TOKEN_USERNAME = "_token"

    def __init__(
        self,
        metadata_host: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.metadata_host = (
            metadata_host or os.environ.get("GCE_METADATA_HOST") or self.METADATA_HOST
        )
        self.timeout = timeout
        self.session = session or requests.Session()

    def enabled(self) -> bool:
        """
        Returns true when running on a GCE instance.
        """
        if os.environ.get("GCE_METADATA_HOST"):
            return True
        try:
            with open(self.PRODUCT_NAME_FILE, "r") as fh:
                product_name = fh.read()
        except OSError:
            return False
        return "Google" in product_name

    def matches(self, host: str) -> bool:
        return any(match_host(pattern, host) for pattern in self.HOST_PATTERNS)

    def provide(self) -> Credential:
        url = "http://{}{}".format(self.metadata_host, self.TOKEN_PATH)
        try:
            resp = self.session.get(
                url, headers={"Metadata-Flavor": "Google"}, timeout=self.timeout
            )
            resp.raise_for_status()
            token = resp.json()["access_token"]
        except (requests.RequestException, ValueError, KeyError) as exc:
            raise AuthenticationError(
                "could not obtain an access token from {}: {}".format(
                    self.metadata_host, exc
                )
            ) from exc

        LOGGER.debug("Obtained service account token from %s", self.metadata_host)
        return Credential(username=self.TOKEN_USERNAME, password=token)
