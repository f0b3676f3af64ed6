"""
Tenant isolation verification.

IsolationHarness drives a TenantScopedGateway with one principal per
tenant and reports whether any tenant can see or change another tenant's
records. It is used by the verify_isolation management command as a
regression gate and by the test suite.
"""
import itertools
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from apps.core.exceptions import AccessDenied, CrossTenantViolation, RecordNotFound
from apps.core.validators import InputValidator
from apps.rbac.catalog import Resource

logger = logging.getLogger(__name__)

# Outcomes that show the gateway kept the tenant boundary
REJECTIONS = (AccessDenied, RecordNotFound)


@dataclass
class CheckResult:
    success: bool
    message: str
    details: Optional[Dict] = field(default=None)

    def as_dict(self) -> Dict:
        result = {'success': self.success, 'message': self.message}
        if self.details is not None:
            result['details'] = self.details
        return result


class IsolationHarness:
    """
    Cross-tenant isolation checks.

    Args:
        gateway: The TenantScopedGateway under test
        principal_for_tenant: Maps each tenant id to a principal bound to it
        resources: Collections to exercise
    """

    def __init__(
        self,
        gateway,
        principal_for_tenant: Mapping[str, str],
        resources: Sequence[Resource] = (Resource.LEADS, Resource.CUSTOMERS),
    ):
        self.gateway = gateway
        self.principal_for_tenant = {
            InputValidator.normalize_id(tenant_id): principal_id
            for tenant_id, principal_id in principal_for_tenant.items()
        }
        self.resources = tuple(resources)

    def _principal(self, tenant_id):
        principal_id = self.principal_for_tenant.get(InputValidator.normalize_id(tenant_id))
        if principal_id is None:
            raise KeyError(f"No principal configured for tenant {tenant_id}")
        return principal_id

    def _records_of(self, tenant_id, resource) -> List[Dict]:
        return self.gateway.read_many(self._principal(tenant_id), resource, tenant_id)

    def check_data_isolation(self, tenant_a, tenant_b) -> CheckResult:
        """
        Read A's records, then ask for the same ids under B's scope.

        Any record of A that comes back under B, or a CrossTenantViolation
        raised by the gateway, fails the check. B's own records that share
        an id with one of A's are not leaks.
        """
        tenant_a = InputValidator.normalize_id(tenant_a)
        tenant_b = InputValidator.normalize_id(tenant_b)
        leaks = []
        checked = 0

        try:
            principal_b = self._principal(tenant_b)
            for resource in self.resources:
                for record in self._records_of(tenant_a, resource):
                    checked += 1
                    record_id = InputValidator.normalize_id(record.get('id'))
                    try:
                        seen = self.gateway.read_one(principal_b, resource, record_id, tenant_b)
                    except REJECTIONS:
                        continue
                    except CrossTenantViolation as e:
                        leaks.append({'resource': resource.value, 'record_id': record_id, 'violation': e.details})
                        continue
                    if InputValidator.normalize_id(seen.get('tenant_id')) != tenant_b:
                        leaks.append({'resource': resource.value, 'record_id': record_id})

                try:
                    visible = self.gateway.read_many(principal_b, resource, tenant_b)
                except REJECTIONS:
                    visible = []
                except CrossTenantViolation as e:
                    leaks.append({'resource': resource.value, 'violation': e.details})
                    visible = []
                leaks.extend(
                    {'resource': resource.value, 'record_id': record.get('id')}
                    for record in visible
                    if InputValidator.normalize_id(record.get('tenant_id')) == tenant_a
                )
        except (KeyError, AccessDenied, CrossTenantViolation) as e:
            return CheckResult(
                success=False,
                message=f"Data isolation could not be verified between {tenant_a} and {tenant_b}: {e}",
                details={'tenant_a': tenant_a, 'tenant_b': tenant_b},
            )

        details = {'tenant_a': tenant_a, 'tenant_b': tenant_b, 'records_checked': checked}
        if leaks:
            logger.error(
                f"Data isolation check failed: {len(leaks)} leak(s)",
                extra=details
            )
            return CheckResult(
                success=False,
                message=f"Data isolation violated: {len(leaks)} record(s) of tenant {tenant_a} reachable from tenant {tenant_b}",
                details={**details, 'leaks': leaks},
            )
        return CheckResult(
            success=True,
            message=f"Data isolation holds from tenant {tenant_a} to tenant {tenant_b}",
            details=details,
        )

    def _probe_target(self, tenant_a, tenant_b):
        """
        Pick one of A's records whose id B does not also use.

        Writing to a shared id under B would modify B's own record, so such
        ids are skipped.
        """
        principal_b = self._principal(tenant_b)
        for resource in self.resources:
            for record in self._records_of(tenant_a, resource):
                record_id = InputValidator.normalize_id(record.get('id'))
                try:
                    self.gateway.read_one(principal_b, resource, record_id, tenant_b)
                except REJECTIONS:
                    return resource, record
                except CrossTenantViolation:
                    return resource, record
        return None, None

    def check_mutation_prevention(self, tenant_a, tenant_b) -> CheckResult:
        """
        Try to update and delete one of A's records under B's scope.

        Both attempts must be rejected and the record must read back
        unchanged under A.
        """
        tenant_a = InputValidator.normalize_id(tenant_a)
        tenant_b = InputValidator.normalize_id(tenant_b)
        details = {'tenant_a': tenant_a, 'tenant_b': tenant_b}

        try:
            principal_a = self._principal(tenant_a)
            principal_b = self._principal(tenant_b)
            resource, original = self._probe_target(tenant_a, tenant_b)
        except (KeyError, AccessDenied, CrossTenantViolation) as e:
            return CheckResult(
                success=False,
                message=f"Cross-tenant mutation prevention could not be verified: {e}",
                details=details,
            )
        if original is None:
            return CheckResult(
                success=False,
                message=(
                    f"Cross-tenant mutation prevention could not be verified: "
                    f"tenant {tenant_a} has no record to probe"
                ),
                details=details,
            )

        record_id = InputValidator.normalize_id(original.get('id'))
        details.update({'resource': resource.value, 'record_id': record_id})
        probe = uuid.uuid4().hex
        attempts = {
            'update': lambda: self.gateway.write(
                principal_b, resource, {'id': record_id, 'isolation_probe': probe}, tenant_b
            ),
            'update_with_foreign_scope': lambda: self.gateway.write(
                principal_b, resource, {**original, 'isolation_probe': probe}, tenant_b
            ),
            'delete': lambda: self.gateway.delete(principal_b, resource, record_id, tenant_b),
        }

        accepted = []
        violations = []
        for name, attempt in attempts.items():
            try:
                attempt()
            except REJECTIONS:
                continue
            except CrossTenantViolation as e:
                violations.append({'attempt': name, 'violation': e.details})
                continue
            accepted.append(name)

        try:
            after = self.gateway.read_one(principal_a, resource, record_id, tenant_a)
        except (RecordNotFound, AccessDenied, CrossTenantViolation):
            after = None
        unchanged = after == original

        details.update({'accepted': accepted, 'violations': violations, 'unchanged': unchanged})
        if accepted or violations or not unchanged:
            logger.error("Cross-tenant mutation prevention check failed", extra=details)
            return CheckResult(
                success=False,
                message=(
                    f"Cross-tenant mutation prevention failed: record {record_id} of tenant "
                    f"{tenant_a} was not protected from tenant {tenant_b}"
                ),
                details=details,
            )
        return CheckResult(
            success=True,
            message=f"Cross-tenant mutation prevention holds for tenant {tenant_a} against tenant {tenant_b}",
            details=details,
        )

    def check_segregation(self, tenant_ids: Iterable) -> CheckResult:
        """Run the data isolation check for every ordered pair of tenants."""
        tenant_ids = list(dict.fromkeys(InputValidator.normalize_id(t) for t in tenant_ids))
        if len(tenant_ids) < 2:
            return CheckResult(
                success=False,
                message="N-way segregation needs at least two tenants",
                details={'tenants': tenant_ids},
            )

        pairs = []
        for tenant_a, tenant_b in itertools.permutations(tenant_ids, 2):
            result = self.check_data_isolation(tenant_a, tenant_b)
            pairs.append({'tenant_a': tenant_a, 'tenant_b': tenant_b, **result.as_dict()})

        failed = [pair for pair in pairs if not pair['success']]
        details = {'tenants': tenant_ids, 'pairs': pairs}
        if failed:
            return CheckResult(
                success=False,
                message=f"N-way segregation failed for {len(failed)} of {len(pairs)} tenant pair(s)",
                details=details,
            )
        return CheckResult(
            success=True,
            message=f"N-way segregation holds across {len(tenant_ids)} tenants",
            details=details,
        )
