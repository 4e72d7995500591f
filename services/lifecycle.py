"""
Lifecycle coordinator: the joint device/report state machine.

States of the pair (device status, report status):

    (pending, none)  --verify-->   (verified, none)
    (pending|verified, none) --report--> (reported, active)
    (reported, active) --resolve--> (verified, resolved)

A device reported before it was ever verified returns to ``pending`` on
resolution, since ``verified`` requires staff provenance.

This is the only component that writes the device and report ledgers
together. Each public operation returns a ``TransitionResult``; no exception
escapes. Status writes are compare-and-set, so a concurrent change between
the precondition read and the write surfaces as ``StaleState``, which is
retried from a fresh read up to ``max_stale_retries`` times.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import config
from core.errors import (
    BackendUnavailable, ConstraintViolation, DuplicateActiveReport,
    AlreadyResolved, LifecycleError, StaleState, TransitionResult,
    Unauthorized,
)
from core.logger import logger
from core.validators import parse_enum
from database.models import (
    Device, DeviceReport, DeviceStatus, IncidentType, ReportStatus,
)
from services.audit_service import AuditService
from services.device_service import DeviceService
from services.identity_service import IdentityService, Principal
from services.report_service import ReportService


PROFILE_INCOMPLETE = "profile_incomplete"


# ============================================================================
# Authorization predicates (one per transition)
# ============================================================================

def can_register(principal: Principal, owner_id: int) -> bool:
    """Students register devices for themselves only."""
    return principal.is_student and principal.user_id == owner_id


def can_verify(principal: Principal) -> bool:
    return principal.is_staff


def can_report(principal: Principal, device: Device) -> bool:
    """Only the owning student may report a device."""
    return principal.is_student and device.user_id == principal.user_id


def can_resolve(principal: Principal) -> bool:
    return principal.is_staff


def can_view_device(principal: Principal, device: Device) -> bool:
    return principal.is_staff or device.user_id == principal.user_id


def status_after_resolution(device: Device) -> DeviceStatus:
    """Prior verification provenance decides where a resolved device lands."""
    # verified requires verified_by; a never-verified device goes back to pending
    return DeviceStatus.VERIFIED if device.verified_by is not None else DeviceStatus.PENDING


class LifecycleCoordinator:
    """
    Enforces the device/report state machine for one request.

    Holds only the request's database session; nothing survives between calls.
    """

    def __init__(
        self,
        db: Session,
        audit_context: Optional[Dict[str, Optional[str]]] = None,
        max_stale_retries: Optional[int] = None,
    ):
        self.db = db
        self.audit_context = audit_context or {}
        self.max_stale_retries = (
            config.STALE_STATE_MAX_RETRIES if max_stale_retries is None else max_stale_retries
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def register(
        self, principal: Principal, attrs: Dict[str, Any], owner_id: Optional[int] = None
    ) -> TransitionResult[Device]:
        """Register: () -> (pending, none). Student, self only."""
        def transition():
            target_owner = principal.user_id if owner_id is None else owner_id
            if not can_register(principal, target_owner):
                raise Unauthorized("Only students can register devices, and only for themselves")
            device = DeviceService.register(self.db, target_owner, attrs)
            self.db.commit()
            self._audit(principal, "device_register", "device", device.id, {
                "serial_number": device.serial_number, "type": device.type.value,
            })
            return device

        return self._run("register", principal, transition)

    def verify(
        self, principal: Principal, device_id: int, notes: Optional[str] = None
    ) -> TransitionResult[Device]:
        """Verify: (pending, none) -> (verified, none). Staff only."""
        def transition():
            if not can_verify(principal):
                raise Unauthorized("Only staff can verify devices")
            device = self._load_device(device_id)
            if device.status == DeviceStatus.VERIFIED:
                raise ConstraintViolation("Device is already verified", device_id=device_id)
            if device.status == DeviceStatus.REPORTED or ReportService.has_active_report(self.db, device_id):
                raise ConstraintViolation(
                    "Device has an active report and cannot be verified", device_id=device_id
                )
            device = DeviceService.set_status(
                self.db,
                device_id,
                new_status=DeviceStatus.VERIFIED,
                expected_status=DeviceStatus.PENDING,
                verification={
                    "verified_by": principal.user_id,
                    "verification_date": datetime.utcnow(),
                    "verification_notes": (notes or "").strip() or None,
                },
            )
            self.db.commit()
            self._audit(principal, "device_verify", "device", device_id, {"notes": notes})
            return device

        return self._run("verify", principal, transition)

    def report(
        self, principal: Principal, device_id: int, attrs: Dict[str, Any]
    ) -> TransitionResult[DeviceReport]:
        """
        Report: (pending|verified, none) -> (reported, active). Owning student only.

        The report row is written first, then the device status, in one transaction.
        """
        def transition():
            if not principal.is_student:
                raise Unauthorized("Only the owning student can report a device")
            device = self._load_device(device_id)
            if not can_report(principal, device):
                raise Unauthorized("Only the owning student can report a device")
            if device.status == DeviceStatus.REPORTED:
                raise DuplicateActiveReport(
                    "This device already has an active report", device_id=device_id
                )
            expected = device.status
            report = ReportService.create(self.db, principal.user_id, device, attrs)
            DeviceService.set_status(
                self.db,
                device_id,
                new_status=DeviceStatus.REPORTED,
                expected_status=expected,
            )
            self.db.commit()
            self._audit(principal, "device_report", "report", report.id, {
                "device_id": device_id, "incident_type": report.incident_type.value,
            })
            return report

        return self._run("report", principal, transition, integrity_error=DuplicateActiveReport)

    def resolve(
        self,
        principal: Principal,
        report_id: int,
        resolution_type: Any,
        notes: Optional[str] = None,
    ) -> TransitionResult[DeviceReport]:
        """Resolve: (reported, active) -> (verified, resolved). Staff only."""
        def transition():
            if not can_resolve(principal):
                raise Unauthorized("Only staff can resolve reports")
            report = ReportService.get(self.db, report_id)
            if report.status != ReportStatus.ACTIVE:
                raise AlreadyResolved(
                    f"Report is already {report.status.value}", report_id=report_id
                )
            device = self._load_device(report.device_id)
            actor = IdentityService.get_profile(self.db, principal.user_id)

            report = ReportService.resolve(self.db, report_id, actor, resolution_type, notes)
            DeviceService.set_status(
                self.db,
                device.id,
                new_status=status_after_resolution(device),
                expected_status=DeviceStatus.REPORTED,
            )
            self.db.commit()
            self._audit(principal, "report_resolve", "report", report_id, {
                "device_id": device.id, "resolution_type": report.resolution_type.value,
            })
            return report

        return self._run("resolve", principal, transition)

    # ------------------------------------------------------------------
    # Reads (repair drift between the device status and the report ledger)
    # ------------------------------------------------------------------

    def get_device(self, principal: Principal, device_id: int) -> TransitionResult[Device]:
        def read():
            device = self._load_device(device_id)
            if not can_view_device(principal, device):
                raise Unauthorized("Access denied")
            return device

        return self._run("get_device", principal, read)

    def list_my_devices(self, principal: Principal) -> TransitionResult[List[Device]]:
        def read():
            devices = DeviceService.list_by_owner(self.db, principal.user_id)
            for device in devices:
                self._reconcile_device(device)
            return devices

        return self._run("list_my_devices", principal, read)

    def list_devices(
        self,
        principal: Principal,
        status_filter: Optional[DeviceStatus] = None,
        search: Optional[str] = None,
    ) -> TransitionResult[List[Device]]:
        def read():
            self._require_staff(principal)
            self._repair_drift()
            return DeviceService.list_all(self.db, status_filter=status_filter, search=search)

        return self._run("list_devices", principal, read)

    def list_my_reports(self, principal: Principal) -> TransitionResult[List[DeviceReport]]:
        return self._run(
            "list_my_reports", principal,
            lambda: ReportService.list_by_owner(self.db, principal.user_id),
        )

    def list_active_reports(self, principal: Principal) -> TransitionResult[List[DeviceReport]]:
        def read():
            self._require_staff(principal)
            return ReportService.list_active(self.db)

        return self._run("list_active_reports", principal, read)

    def list_reports(
        self,
        principal: Principal,
        status_filter: Optional[str] = None,
        type_filter: Optional[str] = None,
        search: Optional[str] = None,
    ) -> TransitionResult[List[DeviceReport]]:
        def read():
            self._require_staff(principal)
            report_status = None
            if status_filter and status_filter.lower() != "all":
                report_status = parse_enum(ReportStatus, status_filter, "status")
            incident_type = None
            if type_filter and type_filter.lower() != "all":
                incident_type = parse_enum(IncidentType, type_filter, "incident_type")
            return ReportService.list_all(self.db, report_status, incident_type, search)

        return self._run("list_reports", principal, read)

    def reconcile(self, principal: Principal) -> TransitionResult[List[int]]:
        """Staff pass re-deriving every device status from the report ledger."""
        def run():
            self._require_staff(principal)
            repaired = self._repair_drift()
            if repaired:
                self._audit(principal, "device_reconcile", "device", None, {"repaired": repaired})
            return repaired

        return self._run("reconcile", principal, run)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(
        self,
        event: str,
        principal: Principal,
        fn: Callable[[], Any],
        integrity_error=ConstraintViolation,
    ) -> TransitionResult:
        flags = [] if principal.profile_complete else [PROFILE_INCOMPLETE]
        attempt = 0
        while True:
            try:
                value = fn()
            except StaleState as e:
                self.db.rollback()
                if attempt < self.max_stale_retries:
                    attempt += 1
                    logger.info(f"{event}: stale state for principal {principal.user_id}, retry {attempt}")
                    continue
                logger.warning(f"{event} rejected for principal {principal.user_id}: [{e.kind}] {e.message}")
                return TransitionResult.failure(e)
            except LifecycleError as e:
                self.db.rollback()
                logger.warning(f"{event} rejected for principal {principal.user_id}: [{e.kind}] {e.message}")
                return TransitionResult.failure(e)
            except IntegrityError as e:
                self.db.rollback()
                logger.warning(f"{event} hit integrity error for principal {principal.user_id}: {e.orig}")
                return TransitionResult.failure(integrity_error("Conflicting write rejected by the database"))
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"{event} failed for principal {principal.user_id}: {e}", exc_info=True)
                return TransitionResult.failure(BackendUnavailable("Storage is temporarily unavailable"))

            if flags and event in ("register", "report"):
                logger.warning(f"{event} by principal {principal.user_id} with incomplete profile")
            logger.info(f"{event} succeeded for principal {principal.user_id}")
            return TransitionResult.success(value, flags)

    def _require_staff(self, principal: Principal):
        if not principal.is_staff:
            raise Unauthorized("Staff only")

    def _load_device(self, device_id: int) -> Device:
        device = DeviceService.get(self.db, device_id)
        self._reconcile_device(device)
        return device

    def _reconcile_device(self, device: Device) -> bool:
        """
        Re-derive the device status from "does an active report exist" when the
        two disagree. The repair commits on its own so a later rejection of the
        caller's transition does not undo it.
        """
        has_active = ReportService.has_active_report(self.db, device.id)
        if has_active and device.status != DeviceStatus.REPORTED:
            target = DeviceStatus.REPORTED
        elif not has_active and device.status == DeviceStatus.REPORTED:
            target = status_after_resolution(device)
        else:
            return False

        logger.warning(
            f"Device {device.id} status {device.status.value} disagrees with report ledger; "
            f"repairing to {target.value}"
        )
        DeviceService.set_status(self.db, device.id, new_status=target, expected_status=device.status)
        self.db.commit()
        return True

    def _repair_drift(self) -> List[int]:
        active_devices = select(DeviceReport.device_id).where(DeviceReport.status == ReportStatus.ACTIVE)
        drifted = (
            self.db.query(Device)
            .filter(
                ((Device.status == DeviceStatus.REPORTED) & Device.id.not_in(active_devices))
                | ((Device.status != DeviceStatus.REPORTED) & Device.id.in_(active_devices))
            )
            .all()
        )
        return [device.id for device in drifted if self._reconcile_device(device)]

    def _audit(self, principal: Principal, action: str, resource_type: str, resource_id, details=None):
        try:
            AuditService.log_action(
                self.db,
                action=action,
                user_id=principal.user_id,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details,
                **self.audit_context,
            )
        except SQLAlchemyError as e:
            # The transition is already committed; losing its audit entry is logged, not fatal
            self.db.rollback()
            logger.error(f"Audit write failed for {action} on {resource_type} {resource_id}: {e}", exc_info=True)
