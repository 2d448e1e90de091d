# certwatch/x509_utils.py
from __future__ import annotations

import datetime as dt
import re

from cryptography import x509

from .errors import DecodeError, ParseError
from .models import Validity


_PEM_CERT_RE = re.compile(
    rb"-----BEGIN CERTIFICATE-----\r?\n.*?\r?\n-----END CERTIFICATE-----",
    re.DOTALL,
)
_PEM_ANY_RE = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----")


def _not_before(cert: x509.Certificate) -> dt.datetime:
    # cryptography>=42 exposes the aware *_utc properties
    if hasattr(cert, "not_valid_before_utc"):
        return cert.not_valid_before_utc
    return cert.not_valid_before.replace(tzinfo=dt.timezone.utc)


def _not_after(cert: x509.Certificate) -> dt.datetime:
    if hasattr(cert, "not_valid_after_utc"):
        return cert.not_valid_after_utc
    return cert.not_valid_after.replace(tzinfo=dt.timezone.utc)


def load_first_pem_cert(data: bytes) -> x509.Certificate:
    """
    Load the first CERTIFICATE block of ``data`` (a bundle is allowed, the
    leaf comes first in tls.crt). No chain, signature or revocation checks.
    """
    m = _PEM_CERT_RE.search(data or b"")
    if not m:
        other = _PEM_ANY_RE.search(data or b"")
        if other:
            kind = other.group(1).decode("ascii")
            raise ParseError(f"failed to parse certificate: PEM block is {kind}, not CERTIFICATE")
        raise DecodeError("failed to parse certificate: no PEM block found")
    try:
        return x509.load_pem_x509_certificate(m.group(0))
    except ValueError as exc:
        raise ParseError(f"failed to parse certificate: {exc}") from exc


def extract_validity(data: bytes) -> Validity:
    cert = load_first_pem_cert(data)
    return Validity(not_before=_not_before(cert), not_after=_not_after(cert))
