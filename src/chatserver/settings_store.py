"""Server-wide settings and owner identity."""

import logging
from typing import Any

from pydantic import ValidationError

from chatserver.errors import DeniedError, ValidationRejectedError
from chatserver.models import ServerSettings, ServerSettingsPatch

logger = logging.getLogger(__name__)


class SettingsStore:
    """Holds the singleton ServerSettings.

    Only the current owner may update settings; the owner itself is assigned
    by the session coordinator as users join and leave.
    """

    def __init__(self, initial: ServerSettings | None = None) -> None:
        self._settings = (initial or ServerSettings()).model_copy(update={"owner_id": None})

    @property
    def owner_id(self) -> str | None:
        return self._settings.owner_id

    def get(self) -> ServerSettings:
        """Return a snapshot of the current settings."""
        return self._settings.model_copy()

    def set_owner(self, owner_id: str | None) -> bool:
        """Assign (or clear) the owner identity.

        Returns:
            True if the owner changed
        """
        if owner_id == self._settings.owner_id:
            return False

        logger.info(
            "Owner changed",
            extra={"previous_owner": self._settings.owner_id, "owner": owner_id},
        )
        self._settings = self._settings.model_copy(update={"owner_id": owner_id})
        return True

    def update(self, actor_id: str, patch: dict[str, Any]) -> ServerSettings:
        """Shallow-merge a settings patch on behalf of ``actor_id``.

        Args:
            actor_id: Identity requesting the change
            patch: Partial settings using wire (camelCase) or attribute names

        Returns:
            Snapshot of the updated settings

        Raises:
            DeniedError: If the actor is not the current owner
            ValidationRejectedError: If the patch is not a mapping or has invalid values
        """
        if self._settings.owner_id is None or actor_id != self._settings.owner_id:
            raise DeniedError(f"{actor_id} is not the server owner")

        if not isinstance(patch, dict):
            raise ValidationRejectedError("Settings patch must be an object")

        try:
            changes = ServerSettingsPatch.model_validate(patch).changes()
        except ValidationError as e:
            raise ValidationRejectedError(f"Invalid settings patch: {e}") from e

        self._settings = self._settings.model_copy(update=changes)
        logger.info("Server settings updated", extra={"changes": changes})
        return self.get()
