# Shared FastAPI router dependencies and helpers
import os
import threading
from typing import Optional

from eips_insight.config.common_settings import get_settings
from eips_insight.data_models.events import Repo
from eips_insight.exceptions import AuthenticationError, ValidationError
from eips_insight.lifecycle.roles import RoleDirectory
from eips_insight.services.event_store import EventStore
from eips_insight.services.lifecycle_service import LifecycleService
from eips_insight.utils.logger import logger

# Global service instance for lazy initialization
_service: Optional[LifecycleService] = None
_service_lock = threading.Lock()


def _required_api_key() -> Optional[str]:
    return os.environ.get("EIPS_INSIGHT_TOKEN")


def _validate_api_key(auth_header: Optional[str]) -> None:
    """Check the bearer token; a server without a configured token is open."""
    required = _required_api_key()
    if not required:
        return
    if not auth_header or not auth_header.startswith("Bearer "):
        logger.warning("Router: missing or malformed Authorization header")
        raise AuthenticationError("You didn't provide an API token.")
    token_value = auth_header.split("Bearer ")[-1].strip()
    if token_value != required:
        logger.warning("Router: incorrect API token provided")
        raise AuthenticationError("Incorrect API token provided.")


def _parse_repo(value: Optional[str]) -> Optional[Repo]:
    if value is None or value == "":
        return None
    try:
        return Repo.parse(value)
    except ValueError as e:
        raise ValidationError(str(e))


def get_lifecycle_service() -> LifecycleService:
    """Get or create the lifecycle service with lazy initialization."""
    global _service

    if _service is None:
        with _service_lock:
            # Double-check pattern to avoid race conditions
            if _service is None:
                settings = get_settings()
                _service = LifecycleService(
                    store=EventStore(),
                    role_directory=RoleDirectory(settings.editors),
                    settings=settings,
                )
                logger.info("Router: LifecycleService initialized")
    return _service


def reset_lifecycle_service() -> None:
    global _service
    with _service_lock:
        _service = None
