"""SQLAlchemy models for the quality workflow (ITPs, hold points, conformance)."""
from sqlalchemy import (
    Boolean, Column, String, Integer, DateTime, Text, Numeric,
    ForeignKey, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from .database import Base


POINT_TYPES = ("standard", "witness", "hold")
RESPONSIBLE_PARTIES = ("contractor", "subcontractor", "superintendent")
LOT_STATUSES = (
    "not_started", "in_progress", "awaiting_test", "completed",
    "conformed", "claimed", "ncr_raised",
)
COMPLETION_STATUSES = ("completed", "not_applicable", "pending_verification", "rejected")
VERIFICATION_STATUSES = ("none", "pending_verification", "verified", "rejected")
HOLD_POINT_STATUSES = ("pending", "notified", "scheduled", "requested", "released")
PROJECT_ROLES = (
    "admin", "project_manager", "quality_manager", "superintendent",
    "site_engineer", "foreman", "subcontractor",
)


class User(Base):
    """User directory entry (identity is managed elsewhere)."""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


class Project(Base):
    """Construction project."""
    __tablename__ = "projects"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    project_number = Column(String(100), nullable=True, index=True)
    working_hours_start = Column(String(5), nullable=True)  # "HH:MM"
    working_hours_end = Column(String(5), nullable=True)
    working_days = Column(String(20), nullable=True)  # "1,2,3,4,5", 0=Sunday
    # witnessPointNotification*, requireSubcontractorVerification, hpRecipients
    settings = Column(JSONB, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    members = relationship("ProjectUser", back_populates="project", cascade="all, delete-orphan")
    lots = relationship("Lot", back_populates="project")


class ProjectUser(Base):
    """Project membership with a project-scoped role."""
    __tablename__ = "project_users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(role.in_(PROJECT_ROLES), name="chk_project_user_role"),
        CheckConstraint(status.in_(["active", "pending", "removed"]), name="chk_project_user_status"),
        UniqueConstraint("project_id", "user_id", name="uq_project_user"),
    )

    project = relationship("Project", back_populates="members")
    user = relationship("User")


class ItpTemplate(Base):
    """Inspection and Test Plan template (mutable)."""
    __tablename__ = "itp_templates"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    activity_type = Column(String(100), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    checklist_items = relationship(
        "ItpChecklistItem",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="ItpChecklistItem.sequence_number",
    )


class ItpChecklistItem(Base):
    """Checklist item belonging to a template."""
    __tablename__ = "itp_checklist_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    template_id = Column(UUID(as_uuid=True), ForeignKey("itp_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    point_type = Column(String(20), nullable=False, default="standard")
    responsible_party = Column(String(30), nullable=False, default="contractor")
    evidence_required = Column(String(50), nullable=True)  # "test" means a lab result is required
    acceptance_criteria = Column(Text, nullable=True)
    test_type = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(point_type.in_(POINT_TYPES), name="chk_itp_item_point_type"),
        CheckConstraint(responsible_party.in_(RESPONSIBLE_PARTIES), name="chk_itp_item_responsible_party"),
        CheckConstraint(sequence_number > 0, name="chk_itp_item_sequence_positive"),
        UniqueConstraint("template_id", "sequence_number", name="uq_itp_item_sequence"),
    )

    template = relationship("ItpTemplate", back_populates="checklist_items")


class Lot(Base):
    """Unit of work (e.g. a section of road)."""
    __tablename__ = "lots"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False, index=True)
    lot_number = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    activity_type = Column(String(100), nullable=True)
    chainage_start = Column(Numeric(12, 3), nullable=True)
    chainage_end = Column(Numeric(12, 3), nullable=True)
    status = Column(String(20), nullable=False, default="not_started", index=True)
    conformed_at = Column(DateTime(timezone=True), nullable=True)
    conformed_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    # Optimistic concurrency token: writers compare it before updating.
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(status.in_(LOT_STATUSES), name="chk_lot_status"),
        UniqueConstraint("project_id", "lot_number", name="uq_lot_project_number"),
    )

    project = relationship("Project", back_populates="lots")
    itp_instance = relationship("ItpInstance", back_populates="lot", uselist=False)
    hold_points = relationship("HoldPoint", back_populates="lot")


class ItpInstance(Base):
    """Binding of one frozen checklist snapshot to one lot."""
    __tablename__ = "itp_instances"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lot_id = Column(UUID(as_uuid=True), ForeignKey("lots.id", ondelete="CASCADE"), nullable=False, unique=True)
    # Nullable so that deleting a template never breaks existing instances.
    template_id = Column(UUID(as_uuid=True), ForeignKey("itp_templates.id", ondelete="SET NULL"), nullable=True, index=True)
    template_snapshot = Column(JSONB, nullable=True)
    created_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    lot = relationship("Lot", back_populates="itp_instance")
    template = relationship("ItpTemplate")
    completions = relationship("ItpCompletion", back_populates="instance", cascade="all, delete-orphan")


class ItpCompletion(Base):
    """Outcome recorded against one checklist item of an instance."""
    __tablename__ = "itp_completions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    itp_instance_id = Column(UUID(as_uuid=True), ForeignKey("itp_instances.id", ondelete="CASCADE"), nullable=False, index=True)
    # Not a FK: the item lives in the snapshot and may no longer exist in the template.
    checklist_item_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    status = Column(String(30), nullable=False)
    verification_status = Column(String(30), nullable=False, default="none")
    notes = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verified_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(COMPLETION_STATUSES), name="chk_itp_completion_status"),
        CheckConstraint(verification_status.in_(VERIFICATION_STATUSES), name="chk_itp_completion_verification"),
        UniqueConstraint("itp_instance_id", "checklist_item_id", name="uq_itp_completion_item"),
        Index(
            "idx_itp_completions_pending",
            "verification_status",
            postgresql_where=(verification_status == "pending_verification"),
        ),
    )

    instance = relationship("ItpInstance", back_populates="completions")


class HoldPoint(Base):
    """Tracked hold/witness point (created lazily)."""
    __tablename__ = "hold_points"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lot_id = Column(UUID(as_uuid=True), ForeignKey("lots.id", ondelete="CASCADE"), nullable=False, index=True)
    checklist_item_id = Column(UUID(as_uuid=True), nullable=False)
    point_type = Column(String(20), nullable=False, default="hold")
    description = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    notification_sent_at = Column(DateTime(timezone=True), nullable=True)
    notification_sent_to = Column(Text, nullable=True)
    scheduled_date = Column(DateTime(timezone=True), nullable=True, index=True)
    scheduled_time = Column(String(5), nullable=True)
    requested_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    chase_count = Column(Integer, nullable=False, default=0)
    last_chased_at = Column(DateTime(timezone=True), nullable=True)
    is_escalated = Column(Boolean, nullable=False, default=False)
    escalated_at = Column(DateTime(timezone=True), nullable=True)
    escalated_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    escalated_to = Column(String(255), nullable=True)
    escalation_reason = Column(Text, nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    released_by_name = Column(String(255), nullable=True)
    released_by_org = Column(String(255), nullable=True)
    release_method = Column(String(20), nullable=True)
    release_notes = Column(Text, nullable=True)
    release_signature_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    # Optimistic concurrency token.
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(point_type.in_(["witness", "hold"]), name="chk_hold_point_type"),
        CheckConstraint(status.in_(HOLD_POINT_STATUSES), name="chk_hold_point_status"),
        CheckConstraint(chase_count >= 0, name="chk_hold_point_chase_non_negative"),
        CheckConstraint(
            release_method.in_(["internal", "secure_link"]) | (release_method == None),
            name="chk_hold_point_release_method",
        ),
        UniqueConstraint("lot_id", "checklist_item_id", name="uq_hold_point_lot_item"),
    )

    lot = relationship("Lot", back_populates="hold_points")
    release_tokens = relationship("HoldPointReleaseToken", back_populates="hold_point", cascade="all, delete-orphan")


class HoldPointReleaseToken(Base):
    """Single-use, time-boxed credential for the no-login release link."""
    __tablename__ = "hold_point_release_tokens"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    hold_point_id = Column(UUID(as_uuid=True), ForeignKey("hold_points.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_email = Column(String(255), nullable=False)
    recipient_name = Column(String(255), nullable=True)
    token = Column(String(128), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_release_tokens_valid", "token", "expires_at", postgresql_where=(used_at == None)),
    )

    hold_point = relationship("HoldPoint", back_populates="release_tokens")


class TestResult(Base):
    """Lab test result (lifecycle owned by the test-results module)."""
    __tablename__ = "test_results"
    __test__ = False  # not a pytest class

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False, index=True)
    lot_id = Column(UUID(as_uuid=True), ForeignKey("lots.id"), nullable=True, index=True)
    test_type = Column(String(100), nullable=False)
    test_request_number = Column(String(100), nullable=True)
    laboratory_name = Column(String(255), nullable=True)
    pass_fail = Column(String(10), nullable=False, default="pending")
    status = Column(String(30), nullable=False, default="requested", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(pass_fail.in_(["pass", "fail", "pending"]), name="chk_test_result_pass_fail"),
    )


class Ncr(Base):
    """Non-conformance report (lifecycle owned by the NCR module)."""
    __tablename__ = "ncrs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False, index=True)
    ncr_number = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(30), nullable=False, default="open", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class NcrLot(Base):
    """NCR to lot link."""
    __tablename__ = "ncr_lots"

    ncr_id = Column(UUID(as_uuid=True), ForeignKey("ncrs.id", ondelete="CASCADE"), primary_key=True)
    lot_id = Column(UUID(as_uuid=True), ForeignKey("lots.id", ondelete="CASCADE"), primary_key=True, index=True)


class Notification(Base):
    """In-app notification."""
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True, index=True)
    type = Column(String(50), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    message = Column(Text, nullable=False)
    link_url = Column(Text, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class NotificationOutbox(Base):
    """
    Outbound delivery queue - ONE ROW PER RECIPIENT.
    Rows are claimed with SELECT FOR UPDATE SKIP LOCKED by the worker.
    """
    __tablename__ = "notification_outbox"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True, index=True)
    type = Column(String(50), nullable=False)
    recipient_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    recipient_email = Column(String(255), nullable=True)
    subject = Column(String(500), nullable=False)
    message = Column(Text, nullable=False)
    meta_data = Column(JSONB, default={})

    status = Column(String(20), default="pending", index=True)  # pending/sent/failed/skipped
    attempts = Column(Integer, default=0)
    next_retry_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)
    idempotency_key = Column(String(255), unique=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            status.in_(["pending", "sent", "failed", "skipped"]),
            name="chk_notification_outbox_status",
        ),
        CheckConstraint(
            "recipient_user_id IS NOT NULL OR recipient_email IS NOT NULL",
            name="chk_notification_outbox_recipient",
        ),
        Index("idx_outbox_pending_retry", "status", "next_retry_at",
              postgresql_where=(status == "pending")),
    )


class AuditEvent(Base):
    """Audit event model."""
    __tablename__ = "audit_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    user_name = Column(String(255), nullable=True)
    details = Column(JSONB, default={})
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(
            action.in_([
                "itp_assigned", "itp_template_created", "itp_item_added", "itp_item_updated",
                "itp_item_completed", "itp_item_submitted", "itp_item_verified",
                "itp_item_rejected", "itp_item_reset",
                "hold_point_release_requested", "hold_point_chased", "hold_point_escalated",
                "hold_point_released", "lot_conformed",
            ]),
            name="chk_audit_action",
        ),
        CheckConstraint(
            entity_type.in_(["itp_template", "itp_instance", "itp_completion", "hold_point", "lot"]),
            name="chk_audit_entity_type",
        ),
        Index("idx_audit_events_entity", "entity_type", "entity_id"),
    )
