"""
Template registry.

Templates are reusable message content addressed by a unique key. They are
stored in the DataStore and copied into a notification when it is created,
so later edits never change what an already-queued notification sends.

Only literal content is stored. There is no placeholder rendering.
"""

import logging
from typing import Optional

from notifications.data_store import DataStore
from notifications.errors import NotFoundError
from notifications.models import NotificationChannel, NotificationTemplate

logger = logging.getLogger("template_registry")


class TemplateRegistry:
    """Create, edit, list and delete notification templates."""

    def __init__(self, data_store: DataStore):
        self.data_store = data_store

    async def create_template(
        self,
        key: str,
        channel: NotificationChannel,
        body: str,
        subject: Optional[str] = None,
        description: Optional[str] = None,
    ) -> NotificationTemplate:
        """
        Register a new template.

        Raises:
            ConflictError: If the key is already taken
        """
        template = NotificationTemplate(
            key=key,
            channel=channel,
            subject=subject,
            body=body,
            description=description,
        )
        created = await self.data_store.create_template(template)
        logger.info(f"Template created: key={created.key}, id={created.id}")
        return created

    async def update_template(
        self,
        template_id: str,
        subject: Optional[str] = None,
        body: Optional[str] = None,
        description: Optional[str] = None,
    ) -> NotificationTemplate:
        """
        Update subject, body or description. None leaves a field unchanged.

        Raises:
            NotFoundError: If the template does not exist
        """
        changes = {
            name: value
            for name, value in (("subject", subject), ("body", body), ("description", description))
            if value is not None
        }
        return await self.data_store.update_template(template_id, **changes)

    async def list_templates(self) -> list[NotificationTemplate]:
        return await self.data_store.list_templates()

    async def delete_template(self, template_id: str) -> None:
        """Delete a template. Notifications created from it are unaffected."""
        await self.data_store.delete_template(template_id)
        logger.info(f"Template deleted: id={template_id}")

    async def get_template_by_key(self, key: str) -> NotificationTemplate:
        template = await self.data_store.find_template_by_key(key)
        if template is None:
            raise NotFoundError("Template", key)
        return template
