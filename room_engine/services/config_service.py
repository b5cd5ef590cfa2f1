"""Per-property assignment configuration store."""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Optional

from room_engine.domain.constraints import validate_assignment_config
from room_engine.domain.defaults import default_assignment_config
from room_engine.domain.models import AssignmentConfig
from room_engine.repository.data_repository import (
    ConfigurationRepository,
    InMemoryConfigurationRepository,
)
from room_engine.utils.config import Settings, get_settings
from room_engine.utils.logger import get_logger


logger = get_logger(__name__)


class ConfigurationStore:
    """Whole-object get/replace of property configurations.

    Callers that change one field must read, modify and replace; there is no
    partial merge. Properties without a stored entry receive the documented
    default when seeding is enabled.
    """

    def __init__(
        self,
        repository: Optional[ConfigurationRepository] = None,
        settings: Optional[Settings] = None,
        default_factory: Callable[[str], AssignmentConfig] = default_assignment_config,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or InMemoryConfigurationRepository()
        self._default_factory = default_factory

    def get(self, property_id: str) -> Optional[AssignmentConfig]:
        config = self._repository.get(property_id)
        if config is not None:
            return config
        if not self._settings.seed_default_config:
            return None
        return self._default_factory(property_id)

    def replace(self, property_id: str, config: AssignmentConfig) -> AssignmentConfig:
        if config.property_id != property_id:
            config = replace(config, property_id=property_id)
        validate_assignment_config(config)
        self._repository.save(config)
        logger.info(
            "Assignment configuration replaced | property_id=%s | enabled=%s | rules=%s",
            property_id,
            config.enabled,
            len(config.rules),
        )
        return config
