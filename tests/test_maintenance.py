import uuid
from datetime import date, timedelta

import pytest
from sqlalchemy import select, update

from homeledger.errors import StatusConflict, SuggestionError
from homeledger.inventory import event_timestamp
from homeledger.maintenance import MAX_AI_TASKS, MaintenanceScheduler, add_months, is_overdue
from homeledger.models import Event, EventType, Item, MaintenanceTask, TaskSource, TaskStatus
from homeledger.schemas import MaintenanceSuggestion
from homeledger.suggestions import MaintenanceAdvisor, generate_for_item
from tests.fakes import FakeLLM, seed_property


async def _seed_item(session, prop, name="Carrier Furnace"):
    item = Item(property_id=prop.id, name=name, category="hvac", manufacturer="Carrier")
    session.add(item)
    await session.commit()
    return item


async def _task(scheduler, prop, item=None, name="Replace filter", interval=3, due=date(2024, 1, 1)):
    task = await scheduler.create(prop.id, prop.user_id, name, interval, due, item_id=item.id if item else None)
    await scheduler.session.commit()
    return task


@pytest.mark.parametrize(
    "start,months,expected",
    [
        (date(2024, 1, 31), 1, date(2024, 2, 29)),
        (date(2023, 1, 31), 1, date(2023, 2, 28)),
        (date(2024, 11, 15), 3, date(2025, 2, 15)),
        (date(2024, 2, 15), 6, date(2024, 8, 15)),
        (date(2024, 3, 31), 12, date(2025, 3, 31)),
    ],
)
def test_add_months_clamps_to_month_end(start, months, expected):
    assert add_months(start, months) == expected


def test_is_overdue_compares_dates_only():
    task = MaintenanceTask(next_due_date=date(2024, 5, 1))
    assert is_overdue(task, today=date(2024, 5, 2))
    assert not is_overdue(task, today=date(2024, 5, 1))


def test_snooze_moves_due_date_by_one_interval(run_with_session):
    async def scenario(session):
        prop = await seed_property(session)
        scheduler = MaintenanceScheduler(session)
        task = await _task(scheduler, prop, interval=3, due=date(2024, 1, 1))

        task = await scheduler.snooze(task, prop.user_id)

        assert task.next_due_date == date(2024, 4, 1)
        assert task.last_completed_at is None
        assert task.updated_by_id == prop.user_id

    run_with_session(scenario)


async def _reschedule_behind_its_back(session, task, due):
    # another request moved the row; the in-memory task still holds the old date
    await session.execute(
        update(MaintenanceTask).where(MaintenanceTask.id == task.id).values(next_due_date=due)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


def test_stale_snooze_conflicts_instead_of_advancing_twice(run_with_session):
    async def scenario(session):
        prop = await seed_property(session)
        scheduler = MaintenanceScheduler(session)
        task = await _task(scheduler, prop, interval=3, due=date(2024, 1, 1))
        task_id = task.id
        await _reschedule_behind_its_back(session, task, date(2024, 4, 1))
        assert task.next_due_date == date(2024, 1, 1)

        with pytest.raises(StatusConflict):
            await scheduler.snooze(task, prop.user_id)

        stored = await session.get(MaintenanceTask, task_id, populate_existing=True)
        assert stored.next_due_date == date(2024, 4, 1)

    run_with_session(scenario)


def test_stale_complete_records_no_event(run_with_session):
    async def scenario(session):
        prop = await seed_property(session)
        item = await _seed_item(session, prop)
        scheduler = MaintenanceScheduler(session)
        task = await _task(scheduler, prop, item=item, interval=6, due=date(2024, 1, 1))
        await _reschedule_behind_its_back(session, task, date(2024, 8, 15))

        with pytest.raises(StatusConflict):
            await scheduler.complete(task, prop.user_id, date(2024, 2, 15))
        await session.rollback()

        assert (await session.execute(select(Event))).scalars().all() == []

    run_with_session(scenario)


def test_status_change_after_concurrent_dismiss_conflicts(run_with_session):
    async def scenario(session):
        prop = await seed_property(session)
        scheduler = MaintenanceScheduler(session)
        task = await _task(scheduler, prop)
        task_id = task.id
        await session.execute(
            update(MaintenanceTask).where(MaintenanceTask.id == task_id).values(status=TaskStatus.DISMISSED)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        assert task.status == TaskStatus.ACTIVE

        with pytest.raises(StatusConflict):
            await scheduler.pause(task, prop.user_id)

        stored = await session.get(MaintenanceTask, task_id, populate_existing=True)
        assert stored.status == TaskStatus.DISMISSED

    run_with_session(scenario)


def test_complete_records_event_and_reschedules_from_completion(run_with_session):
    async def scenario(session):
        prop = await seed_property(session)
        item = await _seed_item(session, prop)
        scheduler = MaintenanceScheduler(session)
        task = await _task(scheduler, prop, item=item, interval=6, due=date(2024, 1, 1))

        task = await scheduler.complete(task, prop.user_id, date(2024, 2, 15), cost=45.0, performed_by="Acme HVAC")

        assert task.last_completed_at == date(2024, 2, 15)
        assert task.next_due_date == date(2024, 8, 15)
        events = (await session.execute(select(Event))).scalars().all()
        assert len(events) == 1
        assert events[0].item_id == item.id
        assert events[0].type == EventType.MAINTENANCE
        assert events[0].description == "Replace filter"
        assert events[0].cost == 45.0

    run_with_session(scenario)


def test_complete_without_item_records_no_event(run_with_session):
    async def scenario(session):
        prop = await seed_property(session)
        scheduler = MaintenanceScheduler(session)
        task = await _task(scheduler, prop, name="Clean gutters", interval=12)

        await scheduler.complete(task, prop.user_id, date(2024, 10, 1))

        assert (await session.execute(select(Event))).scalars().all() == []
        assert task.next_due_date == date(2025, 10, 1)

    run_with_session(scenario)


def test_pause_resume_dismiss(run_with_session):
    async def scenario(session):
        prop = await seed_property(session)
        scheduler = MaintenanceScheduler(session)
        task = await _task(scheduler, prop)

        await scheduler.pause(task, prop.user_id)
        assert task.status == TaskStatus.PAUSED
        with pytest.raises(StatusConflict):
            await scheduler.pause(task, prop.user_id)

        await scheduler.resume(task, prop.user_id)
        assert task.status == TaskStatus.ACTIVE

        await scheduler.dismiss(task, prop.user_id)
        assert task.status == TaskStatus.DISMISSED
        for op in (scheduler.pause, scheduler.resume, scheduler.dismiss, scheduler.snooze):
            with pytest.raises(StatusConflict):
                await op(task, prop.user_id)
        with pytest.raises(StatusConflict):
            await scheduler.complete(task, prop.user_id, date(2024, 1, 2))

        assert await scheduler.list_for_property(prop.id) == []

    run_with_session(scenario)


def test_upcoming_orders_by_due_date_and_skips_inactive(run_with_session):
    async def scenario(session):
        prop = await seed_property(session)
        other = await seed_property(session, name="Lake Cabin")
        scheduler = MaintenanceScheduler(session)
        late = await _task(scheduler, prop, name="Flush water heater", due=date(2024, 9, 1))
        soon = await _task(scheduler, prop, name="Test smoke alarms", due=date(2024, 2, 1))
        paused = await _task(scheduler, prop, name="Service boiler", due=date(2024, 1, 1))
        await scheduler.pause(paused, prop.user_id)
        await _task(scheduler, other, name="Winterize", due=date(2024, 1, 1))

        upcoming = await scheduler.upcoming([prop.id])
        assert [t.id for t in upcoming] == [soon.id, late.id]

        limited = await scheduler.upcoming([prop.id, other.id], limit=1)
        assert [t.name for t in limited] == ["Winterize"]
        assert await scheduler.upcoming([]) == []

    run_with_session(scenario)


def test_due_groups_active_tasks_by_owner(run_with_session):
    async def scenario(session):
        alice, bob = uuid.uuid4(), uuid.uuid4()
        house = await seed_property(session, user_id=alice)
        cabin = await seed_property(session, user_id=bob, name="Lake Cabin")
        scheduler = MaintenanceScheduler(session)
        overdue = await _task(scheduler, house, name="Replace filter", due=date(2024, 3, 1))
        today = await _task(scheduler, cabin, name="Winterize", due=date(2024, 3, 10))
        await _task(scheduler, cabin, name="Clean gutters", due=date(2024, 3, 11))
        dismissed = await _task(scheduler, house, name="Old task", due=date(2024, 1, 1))
        await scheduler.dismiss(dismissed, alice)

        due = await scheduler.due(date(2024, 3, 10))

        assert set(due) == {alice, bob}
        assert [t.id for t in due[alice]] == [overdue.id]
        assert [t.id for t in due[bob]] == [today.id]

    run_with_session(scenario)


def test_create_from_suggestions_dedupes_and_caps(run_with_session):
    async def scenario(session):
        prop = await seed_property(session)
        item = await _seed_item(session, prop)
        scheduler = MaintenanceScheduler(session)
        await _task(scheduler, prop, item=item, name="Replace Filter")
        suggestions = [
            MaintenanceSuggestion(name="replace filter", interval_months=3),
            MaintenanceSuggestion(name="Annual inspection", interval_months=12),
            MaintenanceSuggestion(name="annual inspection", interval_months=12),
        ] + [MaintenanceSuggestion(name=f"Task {n}", interval_months=6) for n in range(10)]

        created = await scheduler.create_from_suggestions(
            prop.id, prop.user_id, item.id, suggestions,
            last_done={"annual inspection": date(2024, 1, 31)},
        )

        assert len(created) == MAX_AI_TASKS
        assert created[0].name == "Annual inspection"
        assert created[0].next_due_date == date(2025, 1, 31)
        assert created[1].next_due_date == add_months(date.today(), 6)
        assert all(t.source == TaskSource.AI_SUGGESTED for t in created)
        assert all(t.item_id == item.id for t in created)
        names = [t.name.lower() for t in await scheduler.list_for_item(item.id)]
        assert names.count("replace filter") == 1

    run_with_session(scenario)


def test_generate_for_item_uses_last_maintenance_date(run_with_session):
    async def scenario(session):
        prop = await seed_property(session)
        item = await _seed_item(session, prop)
        done_on = date.today() - timedelta(days=40)
        session.add(Event(item_id=item.id, type=EventType.MAINTENANCE, description="Replace filter",
                          date=event_timestamp(done_on)))
        await session.commit()
        llm = FakeLLM({"suggestions": [
            {"name": "Replace filter", "description": "Swap the 16x25 filter", "intervalMonths": 3},
            {"name": "Annual tune-up", "intervalMonths": 12},
            {"name": "", "intervalMonths": 0},
        ]})

        created = await generate_for_item(session, MaintenanceAdvisor(llm, model="test-model"), item, prop.user_id)

        assert [t.name for t in created] == ["Replace filter", "Annual tune-up"]
        assert created[0].next_due_date == add_months(done_on, 3)
        assert created[0].description == "Swap the 16x25 filter"
        prompt = llm.calls[0][1][1]["content"]
        assert "Carrier Furnace" in prompt and "Replace filter" in prompt

    run_with_session(scenario)


def test_advisor_failure_creates_nothing(run_with_session):
    async def scenario(session):
        prop = await seed_property(session)
        item = await _seed_item(session, prop)

        with pytest.raises(SuggestionError):
            await generate_for_item(session, MaintenanceAdvisor(FakeLLM(None), model="m"), item, prop.user_id)

        assert (await session.execute(select(MaintenanceTask))).scalars().all() == []

    run_with_session(scenario)
