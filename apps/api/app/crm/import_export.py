from __future__ import annotations

import csv
import io
import logging
import re
import time
import uuid
from datetime import datetime
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from app import audit, events
from app.context import reset_correlation_id, set_correlation_id
from app.core.auth import ActorUser
from app.core.config import get_settings
from app.core.errors import InvalidStageError, NotFoundError, ValidationError
from app.crm.models import Lead, LeadImportJob, PipelineStage
from app.crm.schemas import (
    BulkImportRequest,
    BulkImportResult,
    ColumnMapping,
    ImportParseResult,
    ImportRowResult,
    ImportSummary,
    LeadCreate,
    LeadImportJobRead,
    LeadUpdate,
)
from app.crm.service import follow_up_sync, get_accessible_campaign, lead_service, utcnow, visible_campaign_ids
from app.metrics import observe_import_rows, observe_job


logger = logging.getLogger("app.crm.import")
tracer = trace.get_tracer("app.crm.import")

JOB_TYPE = "LEAD_BULK_IMPORT"
PREVIEW_ROWS = 10

MOVE_IN_TIMELINE_SYNONYMS = {
    "WITHIN_1_MONTH": "ASAP",
    "WITHIN_3_MONTHS": "ONE_TO_THREE_MONTHS",
    "1-3_MONTHS": "ONE_TO_THREE_MONTHS",
    "WITHIN_6_MONTHS": "THREE_TO_SIX_MONTHS",
    "3-6_MONTHS": "THREE_TO_SIX_MONTHS",
    "WITHIN_1_YEAR": "SIX_TO_TWELVE_MONTHS",
    "6-12_MONTHS": "SIX_TO_TWELVE_MONTHS",
    "1_YEAR_PLUS": "OVER_A_YEAR",
    "FLEXIBLE": "JUST_BROWSING",
}
PRE_APPROVAL_SYNONYMS = {
    "APPROVED": "PRE_APPROVED",
    "QUALIFIED": "PRE_QUALIFIED",
    "NOT_APPLICABLE": "NOT_NEEDED",
    "N/A": "NOT_NEEDED",
    "NA": "NOT_NEEDED",
    "NONE": "NOT_NEEDED",
}
HOUSING_STATUS_SYNONYMS = {
    "OWNER_OCCUPIED": "OWNS_HOME",
    "OWNS": "OWNS_HOME",
    "RENTER": "RENTING",
    "TENANT": "RENTING",
    "WITH_FAMILY": "LIVING_WITH_FAMILY",
    "NOT_APPLICABLE": "OTHER",
    "N/A": "OTHER",
    "NA": "OTHER",
    "NONE": "OTHER",
}
ENUM_SYNONYMS: dict[str, dict[str, str]] = {
    "move_in_timeline": MOVE_IN_TIMELINE_SYNONYMS,
    "pre_approval_status": PRE_APPROVAL_SYNONYMS,
    "current_housing_status": HOUSING_STATUS_SYNONYMS,
    "lead_type": {},
}
LIST_FIELDS = {"property_type_preference", "location_preference", "tags"}
# Set by the import itself, never taken from a row.
PROTECTED_FIELDS = {"campaign_id", "current_stage_id", "id", "created_by_id", "is_archived", "row_version"}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")
_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def to_snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", name.strip()).lower()


def normalize_enum(value: str, target_field: str) -> str:
    normalized = re.sub(r"\s+", "_", value.strip().upper())
    return ENUM_SYNONYMS.get(target_field, {}).get(normalized, normalized)


def _parse_number(value: str) -> float | None:
    cleaned = _NON_NUMERIC.sub("", value)
    try:
        return float(cleaned)
    except ValueError:
        return None


def _parse_date(value: str) -> str | None:
    candidate = value.replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(candidate).isoformat()
    except ValueError:
        pass
    for fmt in ("%m/%d/%Y", "%m/%d/%Y %H:%M", "%d %b %Y", "%b %d %Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(value, fmt).isoformat()
        except ValueError:
            continue
    return None


def transform_value(raw: Any, transform: str, target_field: str) -> Any:
    if raw is None:
        return None
    text = str(raw).strip()
    if text == "":
        return None

    if transform == "UPPERCASE":
        if target_field in ENUM_SYNONYMS:
            return normalize_enum(text, target_field)
        return text.upper()
    if transform == "LOWERCASE":
        return text.lower()
    if transform == "TRIM":
        return text
    if transform == "SPLIT_COMMA":
        return [part.strip() for part in text.split(",") if part.strip()]
    if transform == "PARSE_NUMBER":
        return _parse_number(text)
    if transform == "PARSE_DATE":
        return _parse_date(text)
    return raw


def map_row(row: dict[str, Any], column_mappings: list[ColumnMapping]) -> dict[str, Any]:
    """Project one source row onto lead fields. Without mappings the row keys are used as field names."""
    mappings = column_mappings or [
        ColumnMapping(source_column=column, target_field=column) for column in row.keys() if column
    ]
    data: dict[str, Any] = {}
    for mapping in mappings:
        target_field = to_snake_case(mapping.target_field)
        if target_field in PROTECTED_FIELDS:
            continue
        value = transform_value(row.get(mapping.source_column), mapping.transform_function, target_field)
        if value is None:
            continue
        if target_field in LIST_FIELDS and isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        data[target_field] = value
    return data


def parse_csv(content: bytes) -> ImportParseResult:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationError("CSV file must be UTF-8 encoded", details={"file": "encoding"}) from exc

    reader = csv.DictReader(io.StringIO(text))
    headers = [header.strip() for header in (reader.fieldnames or []) if header and header.strip()]
    if not headers:
        raise ValidationError("CSV file has no header row", details={"file": "headers"})

    rows: list[dict[str, Any]] = []
    for record in reader:
        cleaned = {
            key.strip(): (value.strip() if isinstance(value, str) else value)
            for key, value in record.items()
            if key and key.strip()
        }
        if any(value not in (None, "") for value in cleaned.values()):
            rows.append(cleaned)
    return ImportParseResult(headers=headers, preview=rows[:PREVIEW_ROWS], total_rows=len(rows), all_rows=rows)


def _schema_error_message(exc: SchemaValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)


class LeadImporter:
    def run(self, session: Session, actor_user: ActorUser, dto: BulkImportRequest) -> BulkImportResult:
        settings = get_settings()
        if len(dto.rows) > settings.import_max_rows:
            raise ValidationError(
                f"Import is limited to {settings.import_max_rows} rows",
                details={"total_rows": len(dto.rows), "max_rows": settings.import_max_rows},
            )

        campaign = get_accessible_campaign(session, actor_user, dto.campaign_id)
        stage = session.get(PipelineStage, dto.default_stage_id)
        if stage is None or stage.pipeline_id != campaign.pipeline_id:
            raise InvalidStageError(
                "Default stage does not belong to campaign's pipeline",
                details={"stage_id": str(dto.default_stage_id)},
            )

        job = LeadImportJob(
            campaign_id=campaign.id,
            requested_by_id=actor_user.user_id,
            status="RUNNING",
            total_rows=len(dto.rows),
            correlation_id=actor_user.correlation_id,
            started_at=utcnow(),
        )
        session.add(job)
        session.commit()
        job_id = job.id

        token = set_correlation_id(actor_user.correlation_id)
        started = time.perf_counter()
        final_status = "FAILED"
        results: list[ImportRowResult] = []
        with tracer.start_as_current_span("crm.job.run") as job_span:
            job_span.set_attribute("job_id", str(job_id))
            job_span.set_attribute("job_type", JOB_TYPE)
            job_span.set_attribute("correlation_id", actor_user.correlation_id or "")
            logger.info(
                "job.started",
                extra={
                    "job_id": str(job_id),
                    "job_type": JOB_TYPE,
                    "status": "RUNNING",
                    "duration_ms": 0.0,
                    "user_id": str(actor_user.user_id),
                    "total_rows": len(dto.rows),
                },
            )
            try:
                scope = visible_campaign_ids(session, actor_user)
                for index, row in enumerate(dto.rows, start=1):
                    results.append(self._import_row(session, actor_user, dto, index, row, scope))

                summary = self._summarize(results)
                job = session.get(LeadImportJob, job_id)
                job.successful = summary.successful
                job.skipped = summary.skipped
                job.failed = summary.failed
                job.status = "FAILED" if summary.failed and not summary.successful else "SUCCEEDED"
                if summary.failed and summary.successful:
                    job.status = "PARTIALLY_SUCCEEDED"
                job.finished_at = utcnow()
                audit.record(
                    actor_user_id=actor_user.user_id,
                    entity_type="crm.lead_import_job",
                    entity_id=job_id,
                    action="run",
                    before=None,
                    after=summary.model_dump(),
                    correlation_id=actor_user.correlation_id,
                )
                envelope = events.build_envelope(
                    "crm.lead.imported",
                    actor_user.user_id,
                    {"job_id": str(job_id), "campaign_id": str(campaign.id), **summary.model_dump()},
                )
                envelope["correlation_id"] = actor_user.correlation_id
                session.commit()
                events.publish(envelope)
                final_status = job.status
                logger.info(
                    "job.finished",
                    extra={
                        "job_id": str(job_id),
                        "job_type": JOB_TYPE,
                        "status": final_status,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "user_id": str(actor_user.user_id),
                        "successful": summary.successful,
                        "skipped": summary.skipped,
                        "failed": summary.failed,
                    },
                )
                for row_status in ("success", "skipped", "error"):
                    observe_import_rows(row_status, sum(1 for item in results if item.status == row_status))
            except Exception as exc:
                session.rollback()
                job = session.get(LeadImportJob, job_id)
                job.status = "FAILED"
                job.error = str(exc)[:500]
                job.finished_at = utcnow()
                session.commit()
                job_span.record_exception(exc)
                job_span.set_status(Status(StatusCode.ERROR, str(exc)))
                logger.info(
                    "job.finished",
                    extra={
                        "job_id": str(job_id),
                        "job_type": JOB_TYPE,
                        "status": "FAILED",
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "error": str(exc)[:500],
                        "user_id": str(actor_user.user_id),
                    },
                )
                raise
            finally:
                observe_job(job_type=JOB_TYPE, status=final_status, duration=time.perf_counter() - started)
                reset_correlation_id(token)

        summary = self._summarize(results)
        return BulkImportResult(
            summary=summary,
            results=results,
            lead_ids=[item.lead_id for item in results if item.status == "success" and item.lead_id is not None],
            job_id=job_id,
        )

    def get_job(self, session: Session, actor_user: ActorUser, job_id: uuid.UUID) -> LeadImportJobRead:
        job = session.get(LeadImportJob, job_id)
        if job is None:
            raise NotFoundError("Import job not found", details={"job_id": str(job_id)})
        get_accessible_campaign(session, actor_user, job.campaign_id)
        return LeadImportJobRead.model_validate(job)

    def _import_row(
        self,
        session: Session,
        actor_user: ActorUser,
        dto: BulkImportRequest,
        row_number: int,
        row: dict[str, Any],
        scope: list[uuid.UUID] | None,
    ) -> ImportRowResult:
        data = map_row(row, dto.column_mappings)
        if not data.get("first_name") or not data.get("last_name"):
            return ImportRowResult(
                row=row_number,
                status="error",
                message="Missing required fields: first_name and last_name",
            )

        savepoint = session.begin_nested()
        try:
            existing = None
            if dto.duplicate_handling != "CREATE_NEW":
                existing = self._find_duplicate(session, dto.duplicate_check_fields, data, scope)

            if existing is not None and dto.duplicate_handling == "SKIP":
                savepoint.rollback()
                return ImportRowResult(
                    row=row_number,
                    status="skipped",
                    message=f"Duplicate found ({existing.email or existing.mobile})",
                    lead_id=existing.id,
                )

            if existing is not None:
                changes = LeadUpdate.model_validate(
                    {key: value for key, value in data.items() if key in LeadUpdate.model_fields}
                )
                self._update_existing(existing, changes, dto)
                if data.get("next_follow_up_at"):
                    follow_up_sync.sync(session, actor_user, existing)
                session.flush()
                savepoint.commit()
                return ImportRowResult(
                    row=row_number,
                    status="success",
                    message="Updated existing lead",
                    lead_id=existing.id,
                )

            create = LeadCreate.model_validate(
                {
                    **data,
                    "campaign_id": dto.campaign_id,
                    "current_stage_id": dto.default_stage_id,
                    "assigned_to_id": data.get("assigned_to_id") or dto.default_assigned_to_id or actor_user.user_id,
                    "priority": data.get("priority") or dto.default_priority,
                }
            )
            lead = lead_service.build_lead(actor_user, create)
            session.add(lead)
            session.flush()
            if data.get("next_follow_up_at"):
                follow_up_sync.sync(session, actor_user, lead)
            session.flush()
            savepoint.commit()
            return ImportRowResult(row=row_number, status="success", message="Lead created", lead_id=lead.id)
        except SchemaValidationError as exc:
            savepoint.rollback()
            return ImportRowResult(row=row_number, status="error", message=_schema_error_message(exc))
        except Exception as exc:
            savepoint.rollback()
            logger.warning(
                "import.row_failed",
                extra={"row": row_number, "error": str(exc)[:500], "campaign_id": str(dto.campaign_id)},
            )
            return ImportRowResult(row=row_number, status="error", message=str(exc)[:500])

    def _find_duplicate(
        self,
        session: Session,
        check_fields: list[str],
        data: dict[str, Any],
        scope: list[uuid.UUID] | None,
    ) -> Lead | None:
        email = data.get("email")
        mobile = data.get("mobile")
        conditions = []
        if "email" in check_fields and email:
            conditions.append(func.lower(Lead.email) == str(email).lower())
        if "mobile" in check_fields and mobile:
            conditions.append(Lead.mobile == str(mobile))
        if "both" in check_fields and email and mobile:
            conditions.append(and_(func.lower(Lead.email) == str(email).lower(), Lead.mobile == str(mobile)))
        if not conditions:
            return None

        stmt = select(Lead).where(or_(*conditions))
        if scope is not None:
            stmt = stmt.where(Lead.campaign_id.in_(scope))
        return session.scalars(stmt.order_by(Lead.created_at.asc()).limit(1)).first()

    def _update_existing(self, lead: Lead, changes: LeadUpdate, dto: BulkImportRequest) -> None:
        values = changes.model_dump(exclude_unset=True)
        if dto.default_assigned_to_id is not None and "assigned_to_id" not in values:
            values["assigned_to_id"] = dto.default_assigned_to_id
        for field_name, value in values.items():
            if field_name in PROTECTED_FIELDS:
                continue
            setattr(lead, field_name, str(value) if field_name == "email" and value is not None else value)
        lead.row_version += 1

    def _summarize(self, results: list[ImportRowResult]) -> ImportSummary:
        return ImportSummary(
            total_rows=len(results),
            successful=sum(1 for item in results if item.status == "success"),
            skipped=sum(1 for item in results if item.status == "skipped"),
            failed=sum(1 for item in results if item.status == "error"),
        )


lead_importer = LeadImporter()
