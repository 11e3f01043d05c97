from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from meeting_proxy.core.config import Settings
from meeting_proxy.schemas.access import (
    AccessRule,
    AccessRuleListResponse,
    AccessRuleRequest,
    AccessRuleRevalidationResponse,
    GrantRequest,
    GrantResponse,
    RevokeRequest,
    RevokeResponse,
)
from meeting_proxy.schemas.participation import (
    REVOCABLE_SOURCES,
    ParticipationRecord,
    ParticipationSource,
)
from meeting_proxy.schemas.proxy import CallerIdentity
from meeting_proxy.services.access_rule_store import AccessRuleStore, create_access_rule_store
from meeting_proxy.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    UpstreamError,
)
from meeting_proxy.services.participation_ledger import (
    ParticipationLedger,
    create_participation_ledger,
    normalize_record,
)
from meeting_proxy.services.zoom_admin_client import (
    ZoomAdminClient,
    create_zoom_admin_client,
    parse_zoom_datetime,
    parse_zoom_int,
)

logger = logging.getLogger(__name__)


class AccessGrantService:
    """Admin-managed entitlements layered on top of observed participation."""

    def __init__(
        self,
        settings: Settings,
        ledger: ParticipationLedger | None = None,
        access_rule_store: AccessRuleStore | None = None,
        admin_client: ZoomAdminClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.ledger = ledger or create_participation_ledger(settings)
        self.access_rule_store = access_rule_store or create_access_rule_store(settings)
        self.admin_client = admin_client or create_zoom_admin_client(settings)
        self._clock = clock or (lambda: datetime.now(UTC))

    def grant(self, caller: CallerIdentity, payload: GrantRequest) -> GrantResponse:
        _require_admin(caller)

        existing = self.ledger.get(payload.occurrence_id, payload.participant_email)
        if existing and existing.source not in REVOCABLE_SOURCES:
            return GrantResponse(status="exists", record=existing)

        template = self.ledger.find_any_for_occurrence(payload.occurrence_id)
        record = (
            self._record_from_template(template, payload, caller)
            if template
            else self._record_from_platform(payload, caller)
        )
        self.ledger.upsert_batch([record])
        logger.info(
            "Manual grant created occurrence_id=%s participant=%s granted_by=%s occurrence_records=%s",
            payload.occurrence_id,
            payload.participant_email,
            caller.email,
            self.ledger.count_for_occurrence(payload.occurrence_id),
        )
        return GrantResponse(status="granted", record=record)

    def revoke(self, caller: CallerIdentity, payload: RevokeRequest) -> RevokeResponse:
        _require_admin(caller)

        existing = self.ledger.get(payload.occurrence_id, payload.participant_email)
        if existing is None:
            raise NotFoundError("No participation record for this occurrence and participant.")
        if existing.source not in REVOCABLE_SOURCES:
            raise ConflictError(f"Records sourced from {existing.source.value} cannot be revoked.")

        self.ledger.delete(payload.occurrence_id, payload.participant_email)
        logger.info(
            "Grant revoked occurrence_id=%s participant=%s revoked_by=%s source=%s",
            payload.occurrence_id,
            payload.participant_email,
            caller.email,
            existing.source.value,
        )
        return RevokeResponse(
            occurrence_id=payload.occurrence_id,
            participant_email=payload.participant_email,
        )

    def add_rule(self, caller: CallerIdentity, payload: AccessRuleRequest) -> AccessRule:
        _require_admin(caller)
        rule = AccessRule(
            meeting_id=payload.meeting_id,
            participant_email=payload.participant_email,
            created_by=caller.email,
            created_at=self._clock(),
        )
        stored_rule = self.access_rule_store.upsert(rule)
        logger.info(
            "Access rule saved meeting_id=%s participant=%s created_by=%s",
            rule.meeting_id,
            rule.participant_email,
            caller.email,
        )
        return stored_rule

    def delete_rule(self, caller: CallerIdentity, payload: AccessRuleRequest) -> AccessRule:
        _require_admin(caller)
        matching = [
            rule
            for rule in self.access_rule_store.list_for_meeting(payload.meeting_id)
            if rule.participant_email == payload.participant_email
        ]
        if not matching or not self.access_rule_store.delete(payload.meeting_id, payload.participant_email):
            raise NotFoundError("Access rule not found.")
        logger.info(
            "Access rule deleted meeting_id=%s participant=%s deleted_by=%s",
            payload.meeting_id,
            payload.participant_email,
            caller.email,
        )
        return matching[0]

    def list_rules(self, caller: CallerIdentity, meeting_id: str | None = None) -> AccessRuleListResponse:
        _require_admin(caller)
        if meeting_id and meeting_id.strip():
            rules = self.access_rule_store.list_for_meeting(meeting_id.strip())
        else:
            rules = self.access_rule_store.list_all()
        return AccessRuleListResponse(rules=rules)

    def revalidate_rules(self, caller: CallerIdentity) -> AccessRuleRevalidationResponse:
        _require_admin(caller)
        rules = self.access_rule_store.list_all()
        existence_by_email: dict[str, bool] = {}
        expired: list[AccessRule] = []
        for rule in rules:
            email = rule.participant_email
            if email not in existence_by_email:
                existence_by_email[email] = self.admin_client.user_exists(email)
            if existence_by_email[email]:
                continue
            self.access_rule_store.delete(rule.meeting_id, email)
            expired.append(rule)
            logger.info("Expired access rule meeting_id=%s participant=%s", rule.meeting_id, email)
        return AccessRuleRevalidationResponse(checked=len(rules), expired=expired)

    def _record_from_template(
        self,
        template: ParticipationRecord,
        payload: GrantRequest,
        caller: CallerIdentity,
    ) -> ParticipationRecord:
        return normalize_record(
            template.model_copy(
                update={
                    "participant_email": payload.participant_email,
                    "participant_name": payload.participant_email.split("@")[0],
                    "indexed_at": self._clock(),
                    "source": ParticipationSource.manual_grant,
                    "granted_by": caller.email,
                },
            ),
        )

    def _record_from_platform(self, payload: GrantRequest, caller: CallerIdentity) -> ParticipationRecord:
        details = self.admin_client.get_past_meeting(payload.occurrence_id)
        if details is None:
            raise NotFoundError("Meeting occurrence not found.")

        start_time = parse_zoom_datetime(details.get("start_time"))
        if start_time is None:
            raise UpstreamError("Past meeting details did not include a start time.")

        meeting_id = details.get("id")
        host_email = details.get("host_email")
        return ParticipationRecord(
            occurrence_id=payload.occurrence_id,
            meeting_id=str(meeting_id) if meeting_id is not None else "",
            topic=str(details.get("topic") or ""),
            host_email=host_email if isinstance(host_email, str) else None,
            start_time=start_time,
            end_time=parse_zoom_datetime(details.get("end_time")),
            duration_minutes=parse_zoom_int(details.get("duration")) or 0,
            participant_email=payload.participant_email,
            participant_name=payload.participant_email.split("@")[0],
            has_summary=True,
            has_recording=True,
            indexed_at=self._clock(),
            source=ParticipationSource.manual_grant,
            granted_by=caller.email,
        )


def _require_admin(caller: CallerIdentity) -> None:
    if not caller.is_admin:
        logger.warning("Denied admin operation caller=%s", caller.email)
        raise AuthorizationError("Admin privileges are required.")
