from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from meeting_proxy.core.config import Settings
from meeting_proxy.schemas.participation import ParticipationRecord, ParticipationSource
from meeting_proxy.schemas.webhook import (
    MEETING_ENDED_EVENT,
    URL_VALIDATION_EVENT,
    MeetingEndedObject,
    MeetingEndedPayload,
    UrlValidationPayload,
    UrlValidationResponse,
    WebhookAcknowledgement,
    WebhookEnvelope,
)
from meeting_proxy.services.access_rule_store import AccessRuleStore, create_access_rule_store
from meeting_proxy.services.errors import (
    ConfigurationError,
    InvalidRequestError,
    StorageError,
    UpstreamError,
)
from meeting_proxy.services.participant_set import ParticipantSet
from meeting_proxy.services.participation_ledger import (
    ParticipationLedger,
    create_participation_ledger,
)
from meeting_proxy.services.webhook_signature import build_url_validation_token, verify_signature
from meeting_proxy.services.zoom_admin_client import (
    ZoomAdminClient,
    create_zoom_admin_client,
    parse_zoom_datetime,
    parse_zoom_int,
)

logger = logging.getLogger(__name__)


class ZoomWebhookService:
    def __init__(
        self,
        settings: Settings,
        ledger: ParticipationLedger | None = None,
        admin_client: ZoomAdminClient | None = None,
        access_rule_store: AccessRuleStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.ledger = ledger or create_participation_ledger(settings)
        self.admin_client = admin_client or create_zoom_admin_client(settings)
        self.access_rule_store = access_rule_store or create_access_rule_store(settings)
        self._clock = clock or (lambda: datetime.now(UTC))

    def handle_event(
        self,
        *,
        raw_body: bytes,
        signature: str | None,
        timestamp: str | None,
    ) -> UrlValidationResponse | WebhookAcknowledgement:
        secret = self.settings.zoom_webhook_secret_token
        if not secret.strip():
            raise ConfigurationError("ZOOM_WEBHOOK_SECRET_TOKEN is not configured.")

        verify_signature(
            secret=secret,
            signature=signature,
            timestamp=timestamp,
            raw_body=raw_body,
            tolerance_seconds=self.settings.zoom_webhook_timestamp_tolerance_seconds,
            now=self._clock().timestamp(),
        )

        envelope = self._parse_envelope(raw_body)
        if envelope.event == URL_VALIDATION_EVENT:
            return self._answer_url_validation(envelope, secret)

        if envelope.event == MEETING_ENDED_EVENT:
            meeting = self._parse_meeting_ended(envelope)
            records = self.build_meeting_ended_records(meeting)
            try:
                written = self.ledger.upsert_batch(records)
            except Exception as exc:
                logger.exception("Ledger write failed occurrence_id=%s", meeting.uuid)
                raise StorageError("Unable to persist participation records.") from exc
            return WebhookAcknowledgement(
                status="processed",
                event=envelope.event,
                occurrence_id=meeting.uuid,
                records_written=written,
            )

        logger.info("Ignoring webhook event=%s", envelope.event)
        return WebhookAcknowledgement(status="ignored", event=envelope.event)

    def build_meeting_ended_records(self, meeting: MeetingEndedObject) -> list[ParticipationRecord]:
        details = self._fetch_past_meeting(meeting.uuid)

        host_email = meeting.host_email
        end_time = meeting.end_time
        duration_minutes = meeting.duration
        if details:
            host_email = host_email or _to_text(details.get("host_email"))
            end_time = parse_zoom_datetime(details.get("end_time")) or end_time
            duration_minutes = parse_zoom_int(details.get("duration")) or duration_minutes
        if not host_email and meeting.host_id:
            host_email = self._resolve_user_email(meeting.host_id)
        if not host_email:
            logger.warning("Host email unresolved occurrence_id=%s host_id=%s", meeting.uuid, meeting.host_id)

        participants = ParticipantSet()
        participants.add_host(host_email, meeting.user_name)
        for participant in meeting.participant:
            participants.add(participant.email, participant.user_name)
        for participant in self._fetch_participants(meeting.uuid):
            participants.add(_to_text(participant.get("user_email")), _to_text(participant.get("name")))

        indexed_at = self._clock()
        # Past-meeting details resolving means Zoom finished post-processing the
        # occurrence, so summary and recording may become available.
        content_available = details is not None
        records = participants.to_records(
            occurrence_id=meeting.uuid,
            meeting_id=meeting.id,
            topic=meeting.topic,
            host_email=host_email,
            start_time=meeting.start_time,
            end_time=end_time or indexed_at,
            duration_minutes=duration_minutes,
            has_summary=content_available,
            has_recording=content_available,
            source=ParticipationSource.webhook,
            indexed_at=indexed_at,
        )

        template = records[0] if records else None
        for rule in self.access_rule_store.list_for_meeting(meeting.id):
            if rule.participant_email in participants:
                continue
            records.append(
                ParticipationRecord(
                    occurrence_id=meeting.uuid,
                    meeting_id=meeting.id,
                    topic=meeting.topic,
                    host_email=host_email,
                    start_time=meeting.start_time,
                    end_time=end_time or indexed_at,
                    duration_minutes=duration_minutes,
                    participant_email=rule.participant_email,
                    participant_name=rule.participant_email.split("@")[0],
                    has_summary=template.has_summary if template else content_available,
                    has_recording=template.has_recording if template else content_available,
                    indexed_at=indexed_at,
                    source=ParticipationSource.preregistration,
                    granted_by=rule.created_by,
                ),
            )

        logger.info(
            "Built participation records occurrence_id=%s meeting_id=%s participants=%s total=%s",
            meeting.uuid,
            meeting.id,
            len(participants),
            len(records),
        )
        return records

    def _parse_envelope(self, raw_body: bytes) -> WebhookEnvelope:
        try:
            parsed_payload = json.loads(raw_body or b"{}")
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidRequestError("Request body must be valid JSON.") from exc
        if not isinstance(parsed_payload, dict):
            raise InvalidRequestError("Request body must be a JSON object.")
        try:
            return WebhookEnvelope.model_validate(parsed_payload)
        except ValidationError as exc:
            raise InvalidRequestError("Webhook body is missing the event name.") from exc

    def _answer_url_validation(self, envelope: WebhookEnvelope, secret: str) -> UrlValidationResponse:
        try:
            challenge = UrlValidationPayload.model_validate(envelope.payload)
        except ValidationError as exc:
            raise InvalidRequestError("Missing plainToken.") from exc
        logger.info("Responding to endpoint URL validation challenge")
        return UrlValidationResponse(
            plainToken=challenge.plainToken,
            encryptedToken=build_url_validation_token(secret, challenge.plainToken),
        )

    def _parse_meeting_ended(self, envelope: WebhookEnvelope) -> MeetingEndedObject:
        try:
            return MeetingEndedPayload.model_validate(envelope.payload).object
        except ValidationError as exc:
            raise InvalidRequestError("Malformed meeting.ended payload.") from exc

    def _fetch_past_meeting(self, occurrence_id: str) -> dict[str, Any] | None:
        try:
            return self.admin_client.get_past_meeting(occurrence_id)
        except UpstreamError as exc:
            logger.warning(
                "Past meeting lookup failed occurrence_id=%s error=%s; using webhook values",
                occurrence_id,
                exc.message,
            )
            return None

    def _fetch_participants(self, occurrence_id: str) -> list[dict[str, Any]]:
        try:
            participants = self.admin_client.list_past_meeting_participants(occurrence_id)
        except UpstreamError as exc:
            logger.warning(
                "Participant lookup failed occurrence_id=%s error=%s; using webhook attendees",
                occurrence_id,
                exc.message,
            )
            return []
        return participants or []

    def _resolve_user_email(self, user_id: str) -> str | None:
        try:
            user = self.admin_client.get_user(user_id)
        except UpstreamError as exc:
            logger.warning("Host lookup failed host_id=%s error=%s", user_id, exc.message)
            return None
        if not user:
            return None
        return _to_text(user.get("email"))


def _to_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None
