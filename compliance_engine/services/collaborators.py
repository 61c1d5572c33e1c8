"""
Course Allocation Platform
Read-only collaborator adapters over the allocation schema.

The compliance engine never writes to these tables. Scanner and dispatcher
take the adapters as constructor arguments so tests can substitute fakes.

    AllocationDirectory   — active allocations, facilitator → manager lookup
    ComplianceRecords     — "is there an active record for (allocation, week)?"
"""

from sqlalchemy.orm import joinedload

from compliance_engine.core.exceptions import NotFoundError
from compliance_engine.models import db
from compliance_engine.models.allocation import (
    ActivityTracker,
    CourseAllocation,
    Facilitator,
    Manager,
)


class AllocationDirectory:
    """Queries over course allocations with facilitator and module resolved."""

    def active_allocations(self) -> list[CourseAllocation]:
        return (
            CourseAllocation.query.options(
                joinedload(CourseAllocation.module),
                joinedload(CourseAllocation.facilitator),
            )
            .filter(CourseAllocation.is_active.is_(True))
            .order_by(CourseAllocation.created_at.asc())
            .all()
        )

    def get_allocation(self, allocation_id) -> CourseAllocation:
        allocation = db.session.get(CourseAllocation, allocation_id) if allocation_id else None
        if allocation is None:
            raise NotFoundError("CourseAllocation", allocation_id)
        return allocation

    def get_facilitator(self, facilitator_id) -> Facilitator:
        facilitator = db.session.get(Facilitator, facilitator_id) if facilitator_id else None
        if facilitator is None:
            raise NotFoundError("Facilitator", facilitator_id)
        return facilitator

    def get_manager(self, manager_id) -> Manager:
        manager = db.session.get(Manager, manager_id) if manager_id else None
        if manager is None:
            raise NotFoundError("Manager", manager_id)
        return manager

    def manager_for(self, allocation: CourseAllocation) -> Manager:
        """Resolve the manager owning the allocation's facilitator."""
        facilitator = allocation.facilitator or self.get_facilitator(allocation.facilitator_id)
        if not facilitator.manager_id:
            raise NotFoundError("Manager", f"facilitator={facilitator.id}")
        return self.get_manager(facilitator.manager_id)


class ComplianceRecords:
    """Existence checks against weekly activity tracker submissions."""

    def has_active_record(self, allocation_id, week_number: int) -> bool:
        return bool(db.session.query(
            ActivityTracker.query.filter_by(
                allocation_id=allocation_id,
                week_number=week_number,
                is_active=True,
            ).exists()
        ).scalar())
