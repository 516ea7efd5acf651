"""Pydantic schemas for API."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Literal, Optional
from datetime import datetime
from uuid import UUID


PointType = Literal["standard", "witness", "hold"]
ResponsibleParty = Literal["contractor", "subcontractor", "superintendent"]
HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ITP template schemas
class ChecklistItemCreate(BaseModel):
    description: str = Field(..., min_length=1)
    sequence_number: Optional[int] = Field(None, gt=0)
    point_type: PointType = "standard"
    responsible_party: ResponsibleParty = "contractor"
    evidence_required: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    test_type: Optional[str] = None


class ChecklistItemUpdate(BaseModel):
    description: Optional[str] = Field(None, min_length=1)
    point_type: Optional[PointType] = None
    responsible_party: Optional[ResponsibleParty] = None
    evidence_required: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    test_type: Optional[str] = None


class ChecklistItemResponse(BaseModel):
    id: UUID
    template_id: UUID
    sequence_number: int
    description: str
    point_type: str
    responsible_party: str
    evidence_required: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    test_type: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ItpTemplateCreate(BaseModel):
    project_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    activity_type: Optional[str] = None
    checklist_items: list[ChecklistItemCreate] = Field(default_factory=list)


class ItpTemplateResponse(BaseModel):
    id: UUID
    project_id: UUID
    name: str
    description: Optional[str] = None
    activity_type: Optional[str] = None
    is_active: bool = True
    checklist_items: list[ChecklistItemResponse] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


# ITP instance schemas
class ItpAssignRequest(BaseModel):
    lot_id: UUID
    template_id: UUID


class ChecklistItemView(BaseModel):
    """Checklist item as resolved for an instance (snapshot first)."""
    id: str
    description: str
    sequence_number: int
    point_type: str
    responsible_party: str
    evidence_required: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    test_type: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ItpCompletionResponse(BaseModel):
    id: UUID
    itp_instance_id: UUID
    checklist_item_id: UUID
    status: str
    verification_status: str
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by_id: Optional[UUID] = None
    verified_at: Optional[datetime] = None
    verified_by_id: Optional[UUID] = None
    rejection_reason: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ItpInstanceResponse(BaseModel):
    id: UUID
    lot_id: UUID
    template_id: Optional[UUID] = None
    template_name: Optional[str] = None
    created_at: Optional[datetime] = None
    checklist_items: list[ChecklistItemView] = Field(default_factory=list)
    completions: list[ItpCompletionResponse] = Field(default_factory=list)


# Completion schemas
class ItpCompletionCreate(BaseModel):
    itp_instance_id: UUID
    checklist_item_id: UUID
    status: Literal["completed", "not_applicable"] = "completed"
    notes: Optional[str] = None


class CompletionVerifyRequest(BaseModel):
    decision: Literal["accept", "reject"]
    reason: Optional[str] = None


class AdvisoryOutcome(BaseModel):
    name: str
    ok: bool
    error: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class CompletionActionResponse(BaseModel):
    completion: Optional[ItpCompletionResponse] = None
    lot_status: Optional[str] = None
    witness_notification: Optional[dict[str, Any]] = None
    advisories: list[AdvisoryOutcome] = Field(default_factory=list)


# Lot / conformance schemas
class LotResponse(BaseModel):
    id: UUID
    project_id: UUID
    lot_number: str
    description: Optional[str] = None
    activity_type: Optional[str] = None
    status: str
    conformed_at: Optional[datetime] = None
    conformed_by_id: Optional[UUID] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ConformancePrerequisitesResponse(BaseModel):
    itp_assigned: bool
    itp_completed: bool
    itp_completed_count: int
    itp_total_count: int
    itp_incomplete_items: list[dict[str, Any]]
    has_passing_test: bool
    test_results: list[dict[str, Any]]
    no_open_ncrs: bool
    open_ncrs: list[dict[str, Any]]
    model_config = ConfigDict(from_attributes=True)


class ConformanceCheckResponse(BaseModel):
    lot: LotResponse
    prerequisites: ConformancePrerequisitesResponse
    can_conform: bool
    blocking_reasons: list[str]


class ConformRequest(BaseModel):
    expected_updated_at: Optional[datetime] = None


# Hold point schemas
class HoldPointResponse(BaseModel):
    id: UUID
    lot_id: UUID
    checklist_item_id: UUID
    point_type: str
    description: str
    status: str
    notification_sent_at: Optional[datetime] = None
    notification_sent_to: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None
    chase_count: int = 0
    last_chased_at: Optional[datetime] = None
    is_escalated: bool = False
    escalated_at: Optional[datetime] = None
    escalated_to: Optional[str] = None
    escalation_reason: Optional[str] = None
    released_at: Optional[datetime] = None
    released_by_name: Optional[str] = None
    released_by_org: Optional[str] = None
    release_method: Optional[str] = None
    release_notes: Optional[str] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class PrecedingItemView(BaseModel):
    id: str
    description: str
    sequence_number: int
    point_type: str
    is_completed: bool
    completion_status: Optional[str] = None
    verification_status: Optional[str] = None


class WorkingHoursView(BaseModel):
    start: str
    end: str
    days: str


class HoldPointDetailResponse(BaseModel):
    lot_id: UUID
    item: ChecklistItemView
    hold_point: Optional[HoldPointResponse] = None
    status: str
    preceding_items: list[PrecedingItemView]
    incomplete_items: list[PrecedingItemView]
    can_request_release: bool
    working_hours: WorkingHoursView


class ReleaseRecipient(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    name: Optional[str] = None


class HoldPointReleaseRequest(BaseModel):
    lot_id: UUID
    checklist_item_id: UUID
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = Field(None, pattern=HHMM_PATTERN)
    notification_sent_to: Optional[str] = None
    recipients: Optional[list[ReleaseRecipient]] = None


class NotificationScheduleResponse(BaseModel):
    requested_date_time: datetime
    scheduled_notification_time: datetime
    adjusted_for_working_hours: bool
    adjustment_reason: str
    working_hours: WorkingHoursView


class ReleaseLinkResponse(BaseModel):
    recipient_email: str
    recipient_name: Optional[str] = None
    release_url: str
    expires_at: datetime


class HoldPointReleaseRequestResponse(BaseModel):
    hold_point: HoldPointResponse
    release_links: list[ReleaseLinkResponse]
    notification_schedule: Optional[NotificationScheduleResponse] = None


class HoldPointChaseRequest(BaseModel):
    expected_updated_at: Optional[datetime] = None


class HoldPointEscalateRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    escalated_to: Optional[str] = None


class HoldPointInternalReleaseRequest(BaseModel):
    released_by_name: Optional[str] = None
    released_by_org: Optional[str] = None
    release_notes: Optional[str] = None
    signature_data_url: Optional[str] = None


class NotificationTimeRequest(BaseModel):
    project_id: UUID
    requested_date_time: datetime


# Public (token) release schemas
class PublicEvidenceItem(BaseModel):
    id: str
    description: str
    sequence_number: int
    point_type: str
    is_completed: bool
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None


class PublicHoldPointView(BaseModel):
    hold_point_id: UUID
    description: str
    status: str
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None
    lot_id: UUID
    lot_number: str
    lot_description: Optional[str] = None
    project_name: str
    project_number: Optional[str] = None
    recipient_email: str
    recipient_name: Optional[str] = None
    expires_at: datetime
    evidence: list[PublicEvidenceItem]
    test_results: list[dict[str, Any]]


class PublicReleaseRequest(BaseModel):
    released_by_name: str = Field(..., min_length=1, max_length=255)
    released_by_org: Optional[str] = Field(None, max_length=255)
    release_notes: Optional[str] = None
    signature_data_url: Optional[str] = None


class PublicReleaseResponse(BaseModel):
    success: bool = True
    hold_point_id: UUID
    status: str
    released_at: datetime
    released_by_name: str
    released_by_org: Optional[str] = None


# Alert scan schemas
class QualityAlert(BaseModel):
    alert_type: str
    entity_type: str
    entity_id: UUID
    project_id: UUID
    severity: str
    hours_overdue: float
    notifications_created: int = 0


class AlertScanResponse(BaseModel):
    stale_hold_points: int
    pending_verifications: int
    notifications_created: int
    alerts: list[QualityAlert]
