"""
Store for readings and the settings record.
"""
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from meterhub.api.schemas import ReadingIn
from meterhub.core.config import settings
from meterhub.core.database import SessionLocal
from meterhub.core.exceptions import StoreError
from meterhub.models.reading import Reading
from meterhub.models.runtime_setting import RuntimeSetting

logger = logging.getLogger(__name__)


def parse_readings(items: Iterable[Any], default_ts: Optional[int] = None) -> Tuple[List[Dict[str, Any]], int]:
    """Validate submitted readings, returning the accepted records and the number dropped.

    ``default_ts`` stamps objects that carry no timestamp before validation.
    """
    accepted: List[Dict[str, Any]] = []
    dropped = 0
    for item in items:
        if default_ts is not None and isinstance(item, dict) and "ts" not in item and "timestamp" not in item:
            item = {**item, "ts": default_ts}
        ts_key = "timestamp" if isinstance(item, dict) and "ts" not in item and "timestamp" in item else "ts"
        try:
            accepted.append(ReadingIn.model_validate(item).to_record(ts_key))
        except ValidationError:
            dropped += 1
    return accepted, dropped


def reading_ts(record: Dict[str, Any]) -> int:
    """Timestamp of a parsed reading, under whichever key it was submitted with."""
    return int(record["ts"] if "ts" in record else record["timestamp"])


class MeterStore:
    """Persisted collections: the append-only readings list and the settings record.

    Writes to each collection are serialized by a per-collection lock and
    committed as a single transaction.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        default_settings: Optional[Dict[str, Any]] = None,
    ):
        self._session_factory = session_factory
        self._default_settings = dict(default_settings if default_settings is not None else settings.get_default_settings())
        self._readings_lock = threading.Lock()
        self._settings_lock = threading.Lock()

    # Readings
    def append_readings(self, items: Iterable[Any], default_ts: Optional[int] = None) -> List[Dict[str, Any]]:
        """Persist the valid subset of ``items`` and return it in submission order.

        Invalid items are dropped without error; callers compare the length of
        the result with their input to detect them.
        """
        accepted, dropped = parse_readings(items, default_ts=default_ts)
        if dropped:
            logger.debug("Dropped %d invalid reading(s)", dropped)
        if not accepted:
            return []

        with self._readings_lock:
            db = self._session_factory()
            try:
                db.add_all([
                    Reading(device_id=record["device_id"], ts=reading_ts(record), payload=record)
                    for record in accepted
                ])
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Error storing readings: {e}")
                raise StoreError("failed to store readings") from e
            finally:
                db.close()
        return accepted

    def list_readings(self, device_id: Optional[str] = None) -> List[Dict[str, Any]]:
        db = self._session_factory()
        try:
            query = db.query(Reading)
            if device_id is not None:
                query = query.filter(Reading.device_id == device_id)
            return [dict(row.payload) for row in query.order_by(Reading.id).all()]
        except SQLAlchemyError as e:
            logger.error(f"Error loading readings: {e}")
            raise StoreError("failed to load readings") from e
        finally:
            db.close()

    # Settings
    def get_settings(self) -> Dict[str, Any]:
        db = self._session_factory()
        try:
            return {row.key: row.value for row in db.query(RuntimeSetting).order_by(RuntimeSetting.id).all()}
        except SQLAlchemyError as e:
            logger.error(f"Error loading settings: {e}")
            raise StoreError("failed to load settings") from e
        finally:
            db.close()

    def update_settings(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow-merge ``partial`` into the settings record and return the result."""
        if not isinstance(partial, dict):
            raise ValueError("settings update must be a mapping")

        with self._settings_lock:
            self._write_settings(partial, overwrite=True)
            return self.get_settings()

    def ensure_default_settings(self) -> Dict[str, Any]:
        """Seed default keys that are missing; existing values are left untouched."""
        with self._settings_lock:
            self._write_settings(self._default_settings, overwrite=False)
            return self.get_settings()

    def _write_settings(self, values: Dict[str, Any], overwrite: bool):
        db = self._session_factory()
        try:
            existing = {
                row.key: row
                for row in db.query(RuntimeSetting).filter(RuntimeSetting.key.in_(list(values))).all()
            }
            for key, value in values.items():
                row = existing.get(key)
                if row is None:
                    db.add(RuntimeSetting(key=key, value=value))
                elif overwrite:
                    row.value = value
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error storing settings: {e}")
            raise StoreError("failed to store settings") from e
        finally:
            db.close()
