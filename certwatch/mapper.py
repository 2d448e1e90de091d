import logging
from typing import Iterable, List

from .models import CertificateRecord, PolicyKey, WatchPolicy

log = logging.getLogger(__name__)


def policies_for_record(
    record: CertificateRecord,
    policies: Iterable[WatchPolicy],
    unfiltered: bool = False,
) -> List[PolicyKey]:
    """
    Watch policies to re-reconcile after ``record`` changed.

    Only policies in the record's namespace whose selector matches its
    labels, or whose last status lists it (a relabelled or deleted secret
    must drop out), are returned. ``unfiltered=True`` returns every policy.
    """
    keys: List[PolicyKey] = []
    for policy in policies:
        if unfiltered or policy.selects(record) or _was_target(policy, record):
            keys.append(policy.key)
    log.debug("secret %s maps to %d watch policies", record, len(keys))
    return keys


def _was_target(policy: WatchPolicy, record: CertificateRecord) -> bool:
    if policy.namespace != record.namespace:
        return False
    return any(c.name == record.name for c in policy.status.certificates)
