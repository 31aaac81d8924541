"""
Resolve an image reference against the available pull credentials and fetch
its manifest, trying each candidate credential in turn.
"""
import concurrent.futures
import logging
import threading
import time
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Union

from .auth import LazyCredential, build_keyring
from .exceptions import AggregateError, CancelledError, ImagePullerError, InvalidReferenceError
from .models import DEFAULT_TIMEOUT, Credential, PullSecret
from .parsing import normalize_endpoint, parse_image_name
from .providers import ProviderRegistry
from .registry import Manifest, ResponseHook, fetch_manifest

LOGGER = logging.getLogger(__name__)

Fetcher = Callable[..., Manifest]
Secret = Union[PullSecret, Mapping[str, Any]]


class CancelToken:
    """
    Cancels a pull when cancel() is called or once the optional timeout (in
    seconds from creation) has passed.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._event = threading.Event()
        self.deadline = None if timeout is None else time.monotonic() + timeout

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """
        Returns the seconds left until the deadline, None without one.
        """
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


class ImagePuller:
    """
    Pulls image manifests, falling back through every credential the keyring
    offers for the image's repository.
    """

    # Seconds between cancellation checks while a fetch is in flight.
    POLL_INTERVAL = 0.05

    def __init__(
        self,
        providers: Optional[ProviderRegistry] = None,
        docker_config: Optional[Mapping[str, Any]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        verify: Optional[str] = None,
        client_cert: Optional[str] = None,
        hooks: Optional[Sequence[ResponseHook]] = None,
        fetcher: Optional[Fetcher] = None,
    ) -> None:
        self.providers = providers
        self.docker_config = docker_config
        self.timeout = timeout
        self.verify = verify
        self.client_cert = client_cert
        self.hooks = list(hooks or ())
        self.fetcher = fetcher or fetch_manifest

    def pull(
        self,
        image: str,
        secrets: Iterable[Secret] = (),
        cancel: Optional[CancelToken] = None,
    ) -> Manifest:
        """
        Fetch the manifest of image. Without matching credentials a single
        anonymous attempt is made. Otherwise each candidate is tried in order
        and the first manifest returned; if all fail an AggregateError holding
        every failure is raised.
        """
        reference = parse_image_name(image)
        ref = reference.ref
        if not ref:
            raise InvalidReferenceError(
                "image {} names neither a tag nor a digest".format(image)
            )
        endpoint = normalize_endpoint(reference.registry_host)

        keyring = build_keyring(secrets, self.providers, self.docker_config)
        creds, found = keyring.lookup(reference.lookup_key)
        repository = reference.remote_name

        if not found:
            LOGGER.info("Pulling image %s without credentials", image)
            return self._fetch(repository, ref, Credential(server_address=endpoint), cancel)

        pull_errors: List[Exception] = []
        for index, lazy_cred in enumerate(creds, 1):
            self._check_cancelled(cancel, image)
            try:
                credential = self._materialize(lazy_cred, endpoint)
                manifest = self._fetch(repository, ref, credential, cancel)
            except CancelledError:
                raise
            except ImagePullerError as exc:
                LOGGER.warning(
                    "Pulling image %s with credential %d/%d from %s failed: %s",
                    image,
                    index,
                    len(creds),
                    lazy_cred.source or "unknown source",
                    exc,
                )
                pull_errors.append(exc)
                continue

            LOGGER.info(
                "Pulled image %s with credential %d/%d from %s",
                image,
                index,
                len(creds),
                lazy_cred.source or "unknown source",
            )
            return manifest

        raise AggregateError(pull_errors)

    @staticmethod
    def _check_cancelled(cancel: Optional[CancelToken], image: str) -> None:
        if cancel is not None and cancel.cancelled:
            raise CancelledError("pull of {} cancelled".format(image))

    @staticmethod
    def _materialize(lazy_cred: LazyCredential, endpoint: str) -> Credential:
        """
        Provide the credential, bound to the image's endpoint unless it names
        its own server.
        """
        credential = lazy_cred.provide()
        server = credential.server_address
        return Credential(
            username=credential.username,
            password=credential.password,
            auth=credential.auth,
            server_address=normalize_endpoint(server) if server else endpoint,
        )

    def _fetch(
        self,
        repository: str,
        ref: str,
        credential: Credential,
        cancel: Optional[CancelToken],
    ) -> Manifest:
        options = dict(
            verify=self.verify,
            client_cert=self.client_cert,
            timeout=self.timeout,
            hooks=self.hooks,
        )
        if cancel is None:
            return self.fetcher(repository, ref, credential, **options)

        image = "{}:{}".format(repository, ref)
        self._check_cancelled(cancel, image)
        remaining = cancel.remaining()
        if remaining is not None:
            options["timeout"] = min(self.timeout, remaining)

        # The fetch runs on a worker thread so a cancellation can stop the
        # wait for it; an abandoned fetch ends by its own timeout.
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self.fetcher, repository, ref, credential, **options)
            while True:
                done, _ = concurrent.futures.wait([future], timeout=self.POLL_INTERVAL)
                if done:
                    return future.result()
                self._check_cancelled(cancel, image)
        finally:
            executor.shutdown(wait=False)


def pull_image(
    image: str,
    secrets: Iterable[Secret] = (),
    cancel: Optional[CancelToken] = None,
    **kwargs: Any,
) -> Manifest:
    """
    Pull the manifest of image with a one-off ImagePuller configured by kwargs.
    """
    return ImagePuller(**kwargs).pull(image, secrets, cancel=cancel)
