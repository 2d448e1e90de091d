from typing import Dict, List, Optional, Protocol, Tuple

from .errors import PersistError, PolicyNotFound
from .models import CertificateRecord, LabelSelector, PolicyKey, WatchPolicy, WatchPolicyStatus


class Store(Protocol):
    def get_policy(self, key: PolicyKey) -> WatchPolicy: ...

    def list_policies(self) -> List[WatchPolicy]: ...

    def list_records(self, namespace: str, selector: Optional[LabelSelector]) -> List[CertificateRecord]: ...

    def update_record(self, record: CertificateRecord) -> None: ...

    def update_policy_status(self, key: PolicyKey, status: WatchPolicyStatus) -> None: ...


class InMemoryStore:
    """
    Dict-backed store. Objects are copied on the way in and out so callers
    never share state with the store, like a real API server.
    """

    def __init__(self) -> None:
        self._policies: Dict[PolicyKey, WatchPolicy] = {}
        self._records: Dict[Tuple[str, str], CertificateRecord] = {}

    def put_policy(self, policy: WatchPolicy) -> PolicyKey:
        self._policies[policy.key] = policy.model_copy(deep=True)
        return policy.key

    def delete_policy(self, key: PolicyKey) -> None:
        self._policies.pop(key, None)

    def put_record(self, record: CertificateRecord) -> None:
        self._records[(record.namespace, record.name)] = record.model_copy(deep=True)

    def delete_record(self, namespace: str, name: str) -> None:
        self._records.pop((namespace, name), None)

    def get_record(self, namespace: str, name: str) -> CertificateRecord:
        rec = self._records.get((namespace, name))
        if rec is None:
            raise KeyError(f"Record not found: {namespace}/{name}")
        return rec.model_copy(deep=True)

    def get_policy(self, key: PolicyKey) -> WatchPolicy:
        policy = self._policies.get(key)
        if policy is None:
            raise PolicyNotFound(f"WatchPolicy not found: {key}")
        return policy.model_copy(deep=True)

    def list_policies(self) -> List[WatchPolicy]:
        return [p.model_copy(deep=True) for p in self._policies.values()]

    def list_records(self, namespace: str, selector: Optional[LabelSelector]) -> List[CertificateRecord]:
        selector = selector or LabelSelector()
        return [
            r.model_copy(deep=True)
            for r in self._records.values()
            if r.namespace == namespace and selector.matches(r.labels)
        ]

    def update_record(self, record: CertificateRecord) -> None:
        k = (record.namespace, record.name)
        if k not in self._records:
            raise PersistError(f"Record not found: {record}")
        self._records[k] = record.model_copy(deep=True)

    def update_policy_status(self, key: PolicyKey, status: WatchPolicyStatus) -> None:
        policy = self._policies.get(key)
        if policy is None:
            raise PersistError(f"WatchPolicy not found: {key}")
        self._policies[key] = policy.model_copy(update={"status": status.model_copy(deep=True)})
