"""
Exceptions raised while resolving credentials and pulling image manifests.
"""
from typing import Iterator, List, Optional, Sequence


class ImagePullerError(Exception):
    """
    Base class of all imagepuller errors.
    """


class InvalidReferenceError(ImagePullerError, ValueError):
    """
    The image reference could not be parsed or names nothing to pull.
    """


class InvalidEndpointError(ImagePullerError, ValueError):
    """
    The registry host could not be turned into a usable URL.
    """


class InvalidSecretError(ImagePullerError, ValueError):
    """
    A pull secret or docker config document could not be decoded.
    """


class CancelledError(ImagePullerError):
    """
    The pull was cancelled or ran past its deadline.
    """


class FetchError(ImagePullerError):
    """
    A single manifest fetch attempt failed.
    """

    def __init__(
        self,
        message: str,
        *,
        repository: Optional[str] = None,
        ref: Optional[str] = None,
        server_address: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.repository = repository
        self.ref = ref
        self.server_address = server_address
        self.status_code = status_code


class AuthenticationError(FetchError):
    """
    The registry rejected the credentials (401/403).
    """


class NotFoundError(FetchError):
    """
    The repository or the requested tag/digest does not exist.
    """


class TransportError(FetchError):
    """
    Any other network-level or protocol failure.
    """


class AggregateError(ImagePullerError):
    """
    Collects every failed credential attempt of a pull, in attempt order.
    """

    def __init__(self, errors: Sequence[Exception]) -> None:
        self.errors: List[Exception] = list(errors)
        super().__init__(self._message())

    def _message(self) -> str:
        if len(self.errors) == 1:
            return str(self.errors[0])
        return "[{}]".format(", ".join(str(err) for err in self.errors))

    def __iter__(self) -> Iterator[Exception]:
        return iter(self.errors)

    def __len__(self) -> int:
        return len(self.errors)
