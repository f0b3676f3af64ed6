"""
Tenant-scoped access gateway.

All record access goes through TenantScopedGateway. Each call:

1. authorizes the principal for (action, resource) in the tenant (and the
   tenant's company, taken from the tenant directory) before any I/O;
2. queries the document store with the tenant filter;
3. re-checks every document that comes back (or is written) against the
   expected tenant, raising CrossTenantViolation on any mismatch.

The second check exists to catch storage bugs; it never relies on the
query having been correct. Nothing here is retried.
"""
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from apps.core.exceptions import AccessDenied, CrossTenantViolation, RecordNotFound
from apps.core.logging import SecurityLogger
from apps.core.validators import InputValidator
from apps.rbac.catalog import Action, Resource
from apps.rbac.services import AccessControl, PermissionResolver, build_access_control
from apps.records.documents import Document, DocumentStore, get_document_store

logger = logging.getLogger(__name__)

SCOPE_FIELDS = ('tenant_id', 'company_id')


class CallState(str, Enum):
    PENDING = 'pending'
    AUTHORIZATION_CHECKED = 'authorization_checked'
    AUTHORIZED = 'authorized'
    DENIED = 'denied'
    DATA_FETCHED = 'data_fetched'
    ISOLATION_VERIFIED = 'isolation_verified'
    ISOLATION_VIOLATED = 'isolation_violated'
    COMPLETED = 'completed'


TRANSITIONS = {
    CallState.PENDING: {CallState.AUTHORIZATION_CHECKED},
    CallState.AUTHORIZATION_CHECKED: {CallState.AUTHORIZED, CallState.DENIED},
    CallState.AUTHORIZED: {CallState.DATA_FETCHED},
    CallState.DATA_FETCHED: {CallState.ISOLATION_VERIFIED, CallState.ISOLATION_VIOLATED},
    # An update is verified once before and once after it is written
    CallState.ISOLATION_VERIFIED: {
        CallState.DATA_FETCHED, CallState.COMPLETED, CallState.ISOLATION_VIOLATED,
    },
    CallState.DENIED: set(),
    CallState.ISOLATION_VIOLATED: set(),
    CallState.COMPLETED: set(),
}

TERMINAL_STATES = {CallState.DENIED, CallState.ISOLATION_VIOLATED, CallState.COMPLETED}


@dataclass
class GatewayCall:
    """Progress of one gateway call through its states."""

    operation: str
    principal_id: str
    resource: str
    tenant_id: Optional[str]
    company_id: Optional[str] = None
    state: CallState = CallState.PENDING
    history: List[CallState] = field(default_factory=lambda: [CallState.PENDING])

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, state: CallState):
        """
        Move to the next state.

        Raises:
            RuntimeError: On a transition the state machine does not allow
        """
        if state not in TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal gateway transition {self.state.value} -> {state.value} "
                f"during {self.operation}"
            )
        self.state = state
        self.history.append(state)

    def log_context(self) -> Dict:
        return {
            'operation': self.operation,
            'principal_id': self.principal_id,
            'resource': self.resource,
            'tenant_id': self.tenant_id,
        }


def default_tenant_directory(tenant_id) -> Optional[str]:
    """Owning company of a tenant, from the tenant model."""
    from apps.tenants.models import Tenant
    return Tenant.objects.company_id_for(tenant_id)


class TenantScopedGateway:
    """
    The only path to tenant-partitioned records.

    Args:
        resolver: PermissionResolver used for every call
        documents: Document store holding the records
        tenant_directory: Callable mapping a tenant id to its company id
            (defaults to the Tenant model)
    """

    def __init__(
        self,
        resolver: PermissionResolver,
        documents: DocumentStore,
        tenant_directory: Optional[Callable[[str], Optional[str]]] = None,
    ):
        self.resolver = resolver
        self.documents = documents
        self.tenant_directory = tenant_directory or default_tenant_directory

    # ----- call lifecycle -----

    def _authorize(self, operation, principal_id, action, resource, tenant_id, payload=None) -> GatewayCall:
        """
        Run the authorization phase of a call.

        Returns the call in the Authorized state, or raises AccessDenied
        after moving it to Denied.
        """
        tenant_id = InputValidator.normalize_id(tenant_id)
        company_id = self.tenant_directory(tenant_id) if tenant_id else None
        call = GatewayCall(
            operation=operation,
            principal_id=principal_id,
            resource=str(getattr(resource, 'value', resource)),
            tenant_id=tenant_id,
            company_id=company_id,
        )

        call.advance(CallState.AUTHORIZATION_CHECKED)
        try:
            if tenant_id is None:
                raise AccessDenied(
                    "A tenant id is required for record access",
                    details={'reason': 'missing_tenant'}
                )
            # Unknown and soft-deleted tenants have no company in the directory
            if company_id is None:
                SecurityLogger.log_permission_denied(
                    principal_id=principal_id,
                    action=action,
                    resource=resource,
                    reason='missing_tenant',
                    tenant_id=tenant_id,
                )
                raise AccessDenied(
                    "Tenant not found",
                    details={'reason': 'missing_tenant'}
                )
            self.resolver.require(
                principal_id, action, resource,
                company_id=company_id,
                tenant_id=tenant_id,
            )
            if payload is not None:
                self._check_payload_scope(call, payload)
        except AccessDenied:
            call.advance(CallState.DENIED)
            raise

        call.advance(CallState.AUTHORIZED)
        return call

    def _check_payload_scope(self, call: GatewayCall, payload: Dict):
        """Refuse payloads that name a different tenant or company than the call."""
        expected = {'tenant_id': call.tenant_id, 'company_id': call.company_id}
        for name in SCOPE_FIELDS:
            if name not in payload or payload[name] in (None, ''):
                continue
            if expected[name] is None or InputValidator.normalize_id(payload[name]) != expected[name]:
                SecurityLogger.log_suspicious_activity(
                    activity_type='payload_scope_mismatch',
                    description=f"Write payload names {name}={payload[name]} outside the call's scope",
                    principal_id=call.principal_id,
                    tenant_id=call.tenant_id,
                    resource=call.resource,
                    field=name,
                    payload_value=InputValidator.normalize_id(payload[name]),
                )
                raise AccessDenied(
                    "Record scope does not match the request",
                    details={'reason': 'payload_scope_mismatch', 'field': name}
                )

    def _verify(self, call: GatewayCall, documents: List[Document]):
        """
        Check every document against the call's tenant (and company).

        Raises:
            CrossTenantViolation: On the first document owned elsewhere
        """
        call.advance(CallState.DATA_FETCHED)
        for document in documents:
            tenant_ok = document.tenant_id == call.tenant_id
            company_ok = (
                call.company_id is None
                or document.company_id is None
                or document.company_id == call.company_id
            )
            if tenant_ok and company_ok:
                continue

            call.advance(CallState.ISOLATION_VIOLATED)
            SecurityLogger.log_cross_tenant_violation(
                principal_id=call.principal_id,
                resource=call.resource,
                expected_tenant_id=call.tenant_id,
                observed_tenant_id=document.tenant_id,
                operation=call.operation,
                record_id=document.record_id,
                expected_company_id=call.company_id,
                observed_company_id=document.company_id,
                storage_key=document.key,
            )
            raise CrossTenantViolation(
                "Tenant isolation violation detected",
                details={
                    'operation': call.operation,
                    'resource': call.resource,
                    'expected_tenant_id': call.tenant_id,
                    'observed_tenant_id': document.tenant_id,
                    'record_id': document.record_id,
                }
            )
        call.advance(CallState.ISOLATION_VERIFIED)

    def _complete(self, call: GatewayCall):
        call.advance(CallState.COMPLETED)
        logger.debug(
            f"Gateway {call.operation} completed",
            extra=call.log_context()
        )

    def _find(self, call: GatewayCall, collection, record_id) -> Optional[Document]:
        """Fetch and verify the record with this id inside the call's tenant."""
        matches = self.documents.query(collection, id=record_id, tenant_id=call.tenant_id)
        self._verify(call, matches)
        return matches[0] if matches else None

    def _not_found(self, call: GatewayCall, record_id):
        logger.info(
            f"Record {record_id} not found in tenant",
            extra={**call.log_context(), 'record_id': record_id}
        )
        return RecordNotFound(
            "Record not found",
            details={'resource': call.resource, 'record_id': record_id}
        )

    # ----- operations -----

    def read_many(self, principal_id, resource, tenant_id) -> List[Dict]:
        """
        All records of a resource in a tenant.

        Raises:
            AccessDenied: If the principal may not read the resource in the tenant
            CrossTenantViolation: If the store returns another tenant's record
        """
        call = self._authorize('read_many', principal_id, Action.READ, resource, tenant_id)
        collection = Resource(resource).value

        documents = self.documents.query(collection, tenant_id=call.tenant_id)
        self._verify(call, documents)
        self._complete(call)
        return [document.data for document in documents]

    def read_one(self, principal_id, resource, record_id, tenant_id) -> Dict:
        """
        One record of a resource in a tenant.

        Raises:
            AccessDenied: If the principal may not read the resource in the tenant
            RecordNotFound: If the tenant has no record with this id
            CrossTenantViolation: If the store returns another tenant's record
        """
        call = self._authorize('read_one', principal_id, Action.READ, resource, tenant_id)
        record_id = InputValidator.normalize_id(record_id)

        document = self._find(call, Resource(resource).value, record_id)
        if document is None:
            raise self._not_found(call, record_id)
        self._complete(call)
        return document.data

    def write(self, principal_id, resource, record: Dict, tenant_id) -> Dict:
        """
        Create or update a record in a tenant.

        A record without an id is created (create permission). A record with
        an id updates the tenant's existing record with that id (update
        permission); a write never creates or touches a record outside the
        tenant, even when another tenant uses the same id.

        Raises:
            AccessDenied: If the principal may not write, or the payload names
                another tenant or company
            RecordNotFound: If an update targets an id the tenant does not have
            CrossTenantViolation: If the store returns or writes another tenant's record
        """
        record = dict(record or {})
        record_id = InputValidator.normalize_id(record.get('id'))
        action = Action.UPDATE if record_id else Action.CREATE

        call = self._authorize(
            'update' if record_id else 'create',
            principal_id, action, resource, tenant_id,
            payload=record,
        )
        collection = Resource(resource).value
        stamped = {**record, 'tenant_id': call.tenant_id, 'company_id': call.company_id}

        if record_id is None:
            stamped['id'] = uuid.uuid4().hex
            written = self.documents.create(collection, stamped)
        else:
            target = self._find(call, collection, record_id)
            if target is None:
                raise self._not_found(call, record_id)
            written = self.documents.update(collection, target.key, stamped)
            if written is None:
                raise self._not_found(call, record_id)

        self._verify(call, [written])
        self._complete(call)
        logger.info(
            f"Record {call.operation}d",
            extra={**call.log_context(), 'record_id': written.record_id}
        )
        return written.data

    def delete(self, principal_id, resource, record_id, tenant_id) -> None:
        """
        Delete a record of a tenant.

        Raises:
            AccessDenied: If the principal may not delete the resource in the tenant
            RecordNotFound: If the tenant has no record with this id
            CrossTenantViolation: If the store returns another tenant's record
        """
        call = self._authorize('delete', principal_id, Action.DELETE, resource, tenant_id)
        record_id = InputValidator.normalize_id(record_id)
        collection = Resource(resource).value

        target = self._find(call, collection, record_id)
        if target is None or not self.documents.delete(collection, target.key):
            raise self._not_found(call, record_id)
        self._complete(call)
        logger.info(
            "Record deleted",
            extra={**call.log_context(), 'record_id': record_id}
        )


def build_gateway(
    access: Optional[AccessControl] = None,
    documents: Optional[DocumentStore] = None,
    tenant_directory: Optional[Callable[[str], Optional[str]]] = None,
) -> TenantScopedGateway:
    """Wire a gateway from the access-control services and the configured store."""
    access = access or build_access_control()
    return TenantScopedGateway(
        resolver=access.resolver,
        documents=documents or get_document_store(),
        tenant_directory=tenant_directory,
    )
