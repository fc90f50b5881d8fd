# collaboration.py — Task messages and attachment metadata
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from access_control import Action
from config import MESSAGE_MAX_LENGTH
from database import unit_of_work
from errors import ForbiddenError, NotFoundError, NotMemberError, ValidationError
from lifecycle import TaskLifecycleEngine
from models import HistoryAction, TaskAttachment, TaskMessage, new_uuid

logger = logging.getLogger("tasktrack.collaboration")


class CollaborationService:
    """Messages and attachments scoped to a task.

    Authorization goes through the lifecycle engine's task loader, so the
    confidentiality rules are the same as for every other task action.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.engine = TaskLifecycleEngine(session)
        self.repo = self.engine.repo
        self.audit = self.engine.audit

    # --------------------------------------------------------
    # Messages
    # --------------------------------------------------------

    async def post_message(
        self,
        actor_id: str,
        task_id: str,
        content: Optional[str],
        attachment_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> TaskMessage:
        content = (content or "").strip()
        if len(content) > MESSAGE_MAX_LENGTH:
            raise ValidationError(f"Message exceeds {MESSAGE_MAX_LENGTH} characters")
        if not content and attachment_id is None:
            raise ValidationError("Message must have text or an attachment")

        async def work():
            task, _, _ = await self.engine.authorize_task(actor_id, task_id, Action.COMMENT, lock=True)
            message = TaskMessage(
                id=new_uuid(),
                task_id=task.id,
                workspace_id=task.workspace_id,
                sender_id=actor_id,
                content=content,
            )
            if attachment_id is not None:
                attachment = await self.repo.get_attachment(attachment_id)
                if attachment is None or attachment.task_id != task.id:
                    raise NotFoundError("Attachment not found")
                message.attachment_id = attachment.id
                message.attachment_name = attachment.filename
                message.attachment_size = attachment.file_size
                message.attachment_type = attachment.mime_type
            self.session.add(message)
            self.audit.record_event(actor_id, task, HistoryAction.COMMENTED, new_value=message.id)
            await self.session.flush()
            logger.info(f"Message {message.id} posted on task {task.id} by {actor_id}")
            return message

        return await unit_of_work(self.session, work, timeout)

    async def list_messages(self, actor_id: str, task_id: str, timeout: Optional[float] = None) -> List[TaskMessage]:
        async def work():
            task, _, _ = await self.engine.authorize_task(actor_id, task_id, Action.VIEW)
            return await self.repo.list_messages(task.id)

        return await unit_of_work(self.session, work, timeout)

    # --------------------------------------------------------
    # Attachments
    # --------------------------------------------------------

    async def add_attachment(
        self,
        actor_id: str,
        task_id: str,
        filename: str,
        storage_key: str,
        file_size: int = 0,
        mime_type: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> TaskAttachment:
        if not filename or not filename.strip():
            raise ValidationError("filename is required")
        if not storage_key:
            raise ValidationError("storage_key is required")
        if file_size is None or file_size < 0:
            raise ValidationError("file_size must be zero or greater")

        async def work():
            task, _, _ = await self.engine.authorize_task(actor_id, task_id, Action.MANAGE_ATTACHMENT, lock=True)
            attachment = TaskAttachment(
                id=new_uuid(),
                task_id=task.id,
                workspace_id=task.workspace_id,
                uploader_id=actor_id,
                filename=filename.strip(),
                storage_key=storage_key,
                file_size=file_size,
                mime_type=mime_type,
            )
            self.session.add(attachment)
            self.audit.record_event(
                actor_id, task, HistoryAction.ATTACHMENT_ADDED,
                field_name="attachment", new_value=attachment.filename,
            )
            await self.session.flush()
            logger.info(f"Attachment {attachment.id} added to task {task.id} by {actor_id}")
            return attachment

        return await unit_of_work(self.session, work, timeout)

    async def remove_attachment(self, actor_id: str, attachment_id: str, timeout: Optional[float] = None) -> None:
        """Missing and forbidden attachments both surface as NotFoundError."""
        async def work():
            attachment = await self.repo.get_attachment(attachment_id)
            if attachment is None:
                raise NotFoundError("Attachment not found")
            try:
                task, _, _ = await self.engine.authorize_task(
                    actor_id, attachment.task_id, Action.MANAGE_ATTACHMENT, lock=True,
                )
            except (NotMemberError, ForbiddenError, NotFoundError) as e:
                logger.info(f"Attachment {attachment_id} hidden from {actor_id}: {e.code}")
                raise NotFoundError("Attachment not found") from e

            await self.session.delete(attachment)
            self.audit.record_event(
                actor_id, task, HistoryAction.ATTACHMENT_REMOVED,
                field_name="attachment", old_value=attachment.filename,
            )
            await self.session.flush()
            logger.info(f"Attachment {attachment_id} removed from task {task.id} by {actor_id}")

        await unit_of_work(self.session, work, timeout)

    async def list_attachments(
        self, actor_id: str, task_id: str, timeout: Optional[float] = None,
    ) -> List[TaskAttachment]:
        async def work():
            task, _, _ = await self.engine.authorize_task(actor_id, task_id, Action.VIEW)
            return await self.repo.list_attachments(task.id)

        return await unit_of_work(self.session, work, timeout)
