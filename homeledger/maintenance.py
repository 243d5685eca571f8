# homeledger/maintenance.py
"""
Recurring maintenance tasks.

Due dates are calendar dates. Completing a task records a maintenance Event on
the linked item and reschedules from the completion date; snoozing pushes the
current due date out by one interval. A dismissed task never comes back.
"""
import calendar
import logging
import uuid
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger import inventory
from homeledger.errors import NotFound, StatusConflict
from homeledger.models import Event, EventType, MaintenanceTask, Property, TaskSource, TaskStatus
from homeledger.schemas import MaintenanceSuggestion

logger = logging.getLogger(__name__)

DEFAULT_UPCOMING_LIMIT = 20
MAX_AI_TASKS = 5

# statuses a task can still be worked from; dismissed is terminal
LIVE = (TaskStatus.ACTIVE, TaskStatus.PAUSED)


def add_months(day: date, months: int) -> date:
    """Calendar month arithmetic, clamped: Jan 31 + 1 month is the last day of February."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def is_overdue(task: MaintenanceTask, today: Optional[date] = None) -> bool:
    return task.next_due_date < (today or date.today())


class MaintenanceScheduler:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, task_id: uuid.UUID) -> MaintenanceTask:
        task = await self.session.get(MaintenanceTask, task_id)
        if task is None:
            raise NotFound("Maintenance task not found")
        return task

    async def create(
        self,
        property_id: uuid.UUID,
        user_id: uuid.UUID,
        name: str,
        interval_months: int,
        next_due_date: date,
        item_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
        source: str = TaskSource.USER_CREATED,
    ) -> MaintenanceTask:
        task = MaintenanceTask(
            property_id=property_id,
            item_id=item_id,
            name=name,
            description=description,
            interval_months=interval_months,
            next_due_date=next_due_date,
            source=source,
            status=TaskStatus.ACTIVE,
            created_by_id=user_id,
        )
        self.session.add(task)
        await self.session.flush()
        logger.info("Created maintenance task %s (%s, every %d months)", task.id, name, interval_months)
        return task

    async def create_from_suggestions(
        self,
        property_id: uuid.UUID,
        user_id: uuid.UUID,
        item_id: uuid.UUID,
        suggestions: Iterable[MaintenanceSuggestion],
        last_done: Optional[Dict[str, date]] = None,
    ) -> List[MaintenanceTask]:
        """
        Dedupes by name (case-insensitive) against the item's non-dismissed
        tasks. `last_done` maps lowercased task names to when they were last
        performed; the first due date counts from there, else from today.
        """
        last_done = last_done or {}
        existing = await self.list_for_item(item_id)
        seen = {t.name.strip().lower() for t in existing}
        today = date.today()
        created = []
        for s in suggestions:
            if len(created) >= MAX_AI_TASKS:
                break
            key = s.name.strip().lower()
            if key in seen:
                logger.debug("Skipping duplicate maintenance suggestion %s", s.name)
                continue
            seen.add(key)
            due = add_months(last_done.get(key, today), s.interval_months)
            created.append(await self.create(
                property_id, user_id, s.name, s.interval_months, due,
                item_id=item_id, description=s.description, source=TaskSource.AI_SUGGESTED,
            ))
        await self.session.commit()
        logger.info("Created %d AI-suggested tasks for item %s", len(created), item_id)
        return created

    async def update(self, task: MaintenanceTask, user_id: uuid.UUID, changes: Dict) -> MaintenanceTask:
        inventory.apply_changes(task, changes)
        task.updated_by_id = user_id
        await self.session.commit()
        return task

    async def delete(self, task: MaintenanceTask) -> None:
        await self.session.delete(task)
        await self.session.commit()

    async def list_for_property(self, property_id: uuid.UUID) -> List[MaintenanceTask]:
        res = await self.session.execute(
            select(MaintenanceTask)
            .where(MaintenanceTask.property_id == property_id, MaintenanceTask.status != TaskStatus.DISMISSED)
            .order_by(MaintenanceTask.next_due_date)
        )
        return list(res.scalars().all())

    async def list_for_item(self, item_id: uuid.UUID) -> List[MaintenanceTask]:
        res = await self.session.execute(
            select(MaintenanceTask)
            .where(MaintenanceTask.item_id == item_id, MaintenanceTask.status != TaskStatus.DISMISSED)
            .order_by(MaintenanceTask.next_due_date)
        )
        return list(res.scalars().all())

    async def upcoming(self, property_ids: List[uuid.UUID], limit: int = DEFAULT_UPCOMING_LIMIT) -> List[MaintenanceTask]:
        if not property_ids:
            return []
        res = await self.session.execute(
            select(MaintenanceTask)
            .where(MaintenanceTask.property_id.in_(property_ids), MaintenanceTask.status == TaskStatus.ACTIVE)
            .order_by(MaintenanceTask.next_due_date)
            .limit(limit)
        )
        return list(res.scalars().all())

    async def due(self, on: date) -> Dict[uuid.UUID, List[MaintenanceTask]]:
        """Active tasks due on or before `on`, keyed by property owner."""
        res = await self.session.execute(
            select(MaintenanceTask, Property.user_id)
            .join(Property, Property.id == MaintenanceTask.property_id)
            .where(MaintenanceTask.status == TaskStatus.ACTIVE, MaintenanceTask.next_due_date <= on)
            .order_by(MaintenanceTask.next_due_date)
        )
        grouped: Dict[uuid.UUID, List[MaintenanceTask]] = defaultdict(list)
        for task, owner in res.all():
            grouped[owner].append(task)
        return dict(grouped)

    async def _conditional_update(self, task: MaintenanceTask, allowed: Iterable[str], due=None, **values):
        """
        UPDATE ... WHERE status IN (allowed) [AND next_due_date = due]. A
        concurrent writer that got there first turns this into StatusConflict.
        """
        allowed = tuple(allowed)
        conditions = [MaintenanceTask.id == task.id, MaintenanceTask.status.in_(allowed)]
        if due is not None:
            conditions.append(MaintenanceTask.next_due_date == due)
        res = await self.session.execute(
            update(MaintenanceTask)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            current = await self.session.get(MaintenanceTask, task.id, populate_existing=True)
            if current is None:
                raise NotFound("Maintenance task not found")
            if current.status not in allowed:
                raise StatusConflict(f"Task is {current.status}; expected {' or '.join(allowed)}")
            raise StatusConflict(f"Task was rescheduled concurrently; now due {current.next_due_date}")

    async def _reload(self, task: MaintenanceTask) -> MaintenanceTask:
        return await self.session.get(MaintenanceTask, task.id, populate_existing=True)

    async def complete(
        self,
        task: MaintenanceTask,
        user_id: uuid.UUID,
        completed_on: date,
        cost: Optional[float] = None,
        performed_by: Optional[str] = None,
        description: Optional[str] = None,
    ) -> MaintenanceTask:
        observed_due = task.next_due_date
        await self._conditional_update(
            task, LIVE, due=observed_due,
            last_completed_at=completed_on,
            next_due_date=add_months(completed_on, task.interval_months),
            updated_by_id=user_id,
        )
        if task.item_id is not None:
            self.session.add(Event(
                item_id=task.item_id,
                type=EventType.MAINTENANCE,
                date=inventory.event_timestamp(completed_on),
                description=description or task.name,
                cost=cost,
                performed_by=performed_by,
            ))
        await self.session.commit()
        task = await self._reload(task)
        logger.info("Completed task %s on %s; next due %s", task.id, completed_on, task.next_due_date)
        return task

    async def snooze(self, task: MaintenanceTask, user_id: uuid.UUID) -> MaintenanceTask:
        observed_due = task.next_due_date
        await self._conditional_update(
            task, LIVE, due=observed_due,
            next_due_date=add_months(observed_due, task.interval_months),
            updated_by_id=user_id,
        )
        await self.session.commit()
        return await self._reload(task)

    async def _set_status(self, task: MaintenanceTask, user_id: uuid.UUID, allowed: Iterable[str], to: str):
        await self._conditional_update(task, allowed, status=to, updated_by_id=user_id)
        await self.session.commit()
        return await self._reload(task)

    async def pause(self, task, user_id):
        return await self._set_status(task, user_id, [TaskStatus.ACTIVE], TaskStatus.PAUSED)

    async def resume(self, task, user_id):
        return await self._set_status(task, user_id, [TaskStatus.PAUSED], TaskStatus.ACTIVE)

    async def dismiss(self, task, user_id):
        return await self._set_status(task, user_id, LIVE, TaskStatus.DISMISSED)
