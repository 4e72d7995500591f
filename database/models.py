"""
Database models for the campus device registry.
"""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, Text,
    ForeignKey, JSON, Index, TypeDecorator, text
)
from sqlalchemy.orm import declarative_base, relationship
import enum

Base = declarative_base()


# ============================================================================
# Custom Type Decorator for Enum Values
# ============================================================================

class EnumValue(TypeDecorator):
    """Type decorator to ensure enum values (not names) are stored."""
    impl = String
    cache_ok = True

    def __init__(self, enum_class, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value, dialect):
        """Convert enum to its value when writing to database."""
        if value is None:
            return None
        if isinstance(value, enum.Enum):
            return value.value
        return value

    def process_result_value(self, value, dialect):
        """Convert database value back to enum when reading."""
        if value is None:
            return None
        if isinstance(value, str):
            try:
                return self.enum_class(value)
            except ValueError:
                return value
        return value


# ============================================================================
# Enums - Must be defined before models that use them
# ============================================================================

class UserRole(str, enum.Enum):
    """Principal roles for authorization."""
    STUDENT = "student"
    STAFF = "staff"


class ProfileStatus(str, enum.Enum):
    """Account status. Reserved: no lifecycle transition consults it."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    GRADUATED = "graduated"


class DeviceType(str, enum.Enum):
    SMARTPHONE = "smartphone"
    LAPTOP = "laptop"
    TABLET = "tablet"
    OTHER = "other"


class DeviceStatus(str, enum.Enum):
    """Device lifecycle status."""
    PENDING = "pending"
    VERIFIED = "verified"
    REPORTED = "reported"


class IncidentType(str, enum.Enum):
    LOST = "lost"
    STOLEN = "stolen"


class ReportStatus(str, enum.Enum):
    """Report lifecycle status. CANCELLED is reserved; no transition enters it."""
    ACTIVE = "active"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class ResolutionType(str, enum.Enum):
    FOUND = "found"
    RECOVERED = "recovered"


# ============================================================================
# Models
# ============================================================================

class Profile(Base):
    """Principal: an authenticated student or staff member."""
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    role = Column(EnumValue(UserRole), nullable=False)  # Immutable after creation

    # Student fields
    matric_number = Column(String(100), nullable=True, index=True)
    study_level = Column(String(50), nullable=True)
    hall_of_residence = Column(String(255), nullable=True)

    # Staff fields
    staff_id = Column(String(100), nullable=True)

    # Shared profile fields
    phone_number = Column(String(50), nullable=True)
    department = Column(String(255), nullable=True)
    home_address = Column(Text, nullable=True)
    biography = Column(Text, nullable=True)

    status = Column(EnumValue(ProfileStatus), default=ProfileStatus.ACTIVE, nullable=False)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    devices = relationship("Device", back_populates="owner", foreign_keys="Device.user_id")
    reports = relationship("DeviceReport", back_populates="owner", foreign_keys="DeviceReport.user_id")

    __table_args__ = (
        Index('idx_profile_role', 'role'),
        Index('idx_profile_status', 'status'),
    )


class Device(Base):
    """A registered physical item owned by exactly one student."""
    __tablename__ = "devices"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    serial_number = Column(String(255), nullable=False)
    brand = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    type = Column(EnumValue(DeviceType), nullable=False)
    status = Column(EnumValue(DeviceStatus), default=DeviceStatus.PENDING, nullable=False)
    additional_details = Column(Text, nullable=True)
    image_url = Column(String(512), nullable=True)

    # Verification provenance (staff-written)
    verified_by = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    verification_date = Column(DateTime, nullable=True)
    verification_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    owner = relationship("Profile", back_populates="devices", foreign_keys=[user_id])
    verifier = relationship("Profile", foreign_keys=[verified_by])
    reports = relationship("DeviceReport", back_populates="device", order_by="DeviceReport.created_at")

    __table_args__ = (
        Index('idx_device_user', 'user_id'),
        Index('idx_device_status', 'status'),
        Index('idx_device_serial', 'serial_number'),
        Index('idx_device_created', 'created_at'),
    )


class DeviceReport(Base):
    """Lost/stolen incident record tied to one device and its owner."""
    __tablename__ = "device_reports"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(Integer, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    incident_type = Column(EnumValue(IncidentType), nullable=False)
    incident_date = Column(DateTime, nullable=False)
    location = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    police_report = Column(String(255), nullable=True)
    status = Column(EnumValue(ReportStatus), default=ReportStatus.ACTIVE, nullable=False)

    # Resolution provenance (staff-written)
    resolution_type = Column(EnumValue(ResolutionType), nullable=True)
    resolved_by = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    resolution_date = Column(DateTime, nullable=True)
    resolution_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    device = relationship("Device", back_populates="reports")
    owner = relationship("Profile", back_populates="reports", foreign_keys=[user_id])
    resolver = relationship("Profile", foreign_keys=[resolved_by])

    __table_args__ = (
        Index('idx_report_device', 'device_id'),
        Index('idx_report_user', 'user_id'),
        Index('idx_report_status', 'status'),
        Index('idx_report_incident_type', 'incident_type'),
        Index('idx_report_created', 'created_at'),
        # At most one active report per device
        Index(
            'uq_report_active_device', 'device_id',
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )


class AuditLog(Base):
    """Audit log for lifecycle transitions and authentication events."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False)  # e.g., "device_verify", "report_resolve"
    resource_type = Column(String(50), nullable=True)  # e.g., "device", "report"
    resource_id = Column(String(100), nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    user_agent = Column(String(500), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('idx_audit_user', 'user_id'),
        Index('idx_audit_action', 'action'),
    )
