import logging
from datetime import UTC, datetime

from meeting_proxy.core.config import Settings
from meeting_proxy.schemas.health import HealthResponse
from meeting_proxy.services.participation_ledger import ParticipationLedger, create_participation_ledger

logger = logging.getLogger(__name__)


class HealthService:
    def __init__(self, settings: Settings, ledger: ParticipationLedger | None = None) -> None:
        self.settings = settings
        self._ledger = ledger

    def get_status(self) -> HealthResponse:
        ledger_ok = self._ledger_available()
        return HealthResponse(
            status="ok" if ledger_ok else "degraded",
            service=self.settings.app_name,
            version=self.settings.app_version,
            environment=self.settings.app_env,
            ledger_store=self.settings.ledger_store,
            ledger="ok" if ledger_ok else "unavailable",
            timestamp=datetime.now(UTC),
        )

    def _ledger_available(self) -> bool:
        try:
            ledger = self._ledger or create_participation_ledger(self.settings)
            return ledger.is_available()
        except Exception as exc:
            # A Mongo client that cannot reach the server fails while building indexes.
            logger.warning("Ledger unavailable store=%s error=%s", self.settings.ledger_store, exc)
            return False
