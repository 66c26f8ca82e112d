import logging
from typing import Optional

from ..models import AppSetting
from ..schemas.settings import RestrictionSettings
from ..utils.timeutils import utcnow

logger = logging.getLogger(__name__)

IP_RESTRICTION_KEY = "ip_restriction"


class SettingsStore:
    """Reads and writes named JSON settings blobs"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        with self.session_factory() as db:
            setting = db.query(AppSetting).filter(AppSetting.key == key).first()
            return setting.value if setting else None

    def set(self, key: str, value: str) -> None:
        with self.session_factory() as db:
            setting = db.query(AppSetting).filter(AppSetting.key == key).first()
            if setting is None:
                db.add(AppSetting(key=key, value=value, updated_at=utcnow()))
            else:
                setting.value = value
                setting.updated_at = utcnow()
            db.commit()

    def load_restriction_settings(self) -> RestrictionSettings:
        """Stored IP restriction settings, or the defaults when none are stored"""
        raw = self.get(IP_RESTRICTION_KEY)
        if raw is None:
            logger.info("No stored IP restriction settings, using defaults")
            return RestrictionSettings()
        return RestrictionSettings.model_validate_json(raw)

    def save_restriction_settings(self, restriction_settings: RestrictionSettings) -> None:
        self.set(IP_RESTRICTION_KEY, restriction_settings.model_dump_json())
