"""
Atomic counters on movie projects.

spent_credits and completed_scenes are never read-modified-written; every
change is a single UPDATE ... SET field = field + :amount.
"""

from sqlalchemy import select, update
from sqlalchemy.orm import Session
import structlog

from models import MovieProject

logger = structlog.get_logger()

COUNTER_FIELDS = ("spent_credits", "completed_scenes")


def increment_project_field(db: Session, project_id: str, field: str, amount: int) -> int:
    """
    Atomically add amount to a project counter and return the updated value.

    Args:
        db: Session; the caller owns the commit
        project_id: Project to update
        field: One of COUNTER_FIELDS
        amount: Delta, negative to decrement

    Raises:
        ValueError: If field is not a counter or the project does not exist
    """
    if field not in COUNTER_FIELDS:
        raise ValueError(f"Field '{field}' is not an atomic project counter")

    column = getattr(MovieProject, field)
    result = db.execute(
        update(MovieProject)
        .where(MovieProject.id == project_id)
        .values({field: column + amount})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ValueError(f"Project not found: {project_id}")

    new_value = db.execute(select(column).where(MovieProject.id == project_id)).scalar_one()

    # Keep any loaded instance in step with the row
    project = db.get(MovieProject, project_id)
    if project is not None:
        db.refresh(project, attribute_names=[field])

    logger.debug("project_counter_incremented", project_id=project_id, field=field, amount=amount, value=new_value)
    return new_value
