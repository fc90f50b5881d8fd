# followers.py — Per-task follower set
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from errors import PolicyViolationError
from models import Task
from repository import Repository

logger = logging.getLogger("tasktrack.followers")


class FollowerSet:
    """Users interested in a task. The creator is always a member of the set.

    Runs inside the caller's transaction and performs no permission checks;
    the set is a read-side input to confidentiality decisions.
    """

    def __init__(self, session: AsyncSession, repo: Optional[Repository] = None):
        self.session = session
        self.repo = repo or Repository(session)

    async def contains(self, task_id: str, user_id: str) -> bool:
        return user_id in await self.repo.follower_ids(task_id)

    async def list_followers(self, task_id: str) -> List[str]:
        return sorted(await self.repo.follower_ids(task_id))

    async def add(self, task: Task, user_id: str) -> bool:
        """Returns False when ``user_id`` already follows the task."""
        if await self.contains(task.id, user_id):
            return False
        await self.repo.add_follower(task.id, user_id)
        logger.debug(f"User {user_id} now follows task {task.id}")
        return True

    async def remove(self, task: Task, user_id: str) -> bool:
        """Returns False when ``user_id`` was not following the task."""
        if user_id == task.creator_id:
            raise PolicyViolationError("The creator of a task cannot stop following it")
        if not await self.contains(task.id, user_id):
            return False
        await self.repo.remove_follower(task.id, user_id)
        logger.debug(f"User {user_id} no longer follows task {task.id}")
        return True
