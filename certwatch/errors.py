class CertWatchError(Exception):
    """Base class for every error a reconciliation pass can surface."""


class PolicyNotFound(CertWatchError):
    """The watch policy no longer exists. Benign: nothing to reconcile."""


class StoreError(CertWatchError):
    """Transient failure talking to the policy/record store."""


class PersistError(StoreError):
    """A write (status or annotations) was rejected by the store."""


class CertificateError(CertWatchError):
    pass


class DecodeError(CertificateError):
    """No PEM CERTIFICATE block in the record's certificate bytes."""


class ParseError(CertificateError):
    """The PEM block does not decode as a well-formed X.509 certificate."""
