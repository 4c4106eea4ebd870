from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db, utcnow
from ..errors import Conflict, NotFound
from ..models.models import FeederPoint, FeederPointAssignment, User
from ..schemas.assignments import AssignmentResponse
from ..schemas.common import Page
from ..schemas.fleet import FeederPointCreate, FeederPointResponse, FeederPointUpdate
from ..services.assignments import active_assignment_count
from ..services.pagination import PageParams, paginate, text_search


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/feeder-points", tags=["feeder-points"])


def _get_feeder_point(db: Session, feeder_point_id: str) -> FeederPoint:
    point = db.get(FeederPoint, feeder_point_id)
    if not point:
        raise NotFound("Feeder point not found")
    return point


@router.get("", response_model=Page)
def list_feeder_points(
    area: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    query = db.query(FeederPoint)
    if area and area != "all":
        query = query.filter(FeederPoint.area == area)
    rows = query.order_by(FeederPoint.created_at.desc()).all()
    rows = text_search(
        rows,
        search,
        lambda p: p.name,
        lambda p: p.location,
        lambda p: p.area,
    )
    return paginate(rows, params, FeederPointResponse)


@router.get("/{feeder_point_id}", response_model=FeederPointResponse)
def get_feeder_point(
    feeder_point_id: str,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    return _get_feeder_point(db, feeder_point_id)


@router.get("/{feeder_point_id}/assignments", response_model=List[AssignmentResponse])
def get_feeder_point_assignments(
    feeder_point_id: str,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    _get_feeder_point(db, feeder_point_id)
    return (
        db.query(FeederPointAssignment)
        .filter(FeederPointAssignment.feeder_point_id == feeder_point_id)
        .order_by(FeederPointAssignment.assigned_at.desc())
        .all()
    )


@router.post("", response_model=FeederPointResponse, status_code=201)
def create_feeder_point(
    payload: FeederPointCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("manage_feeder_points")),
):
    point = FeederPoint(**payload.model_dump(), created_by=user.id, created_at=utcnow())
    db.add(point)
    db.commit()
    db.refresh(point)
    logger.info("feeder_point_created", feeder_point_id=point.id, actor_id=user.id)
    return point


@router.put("/{feeder_point_id}", response_model=FeederPointResponse)
def update_feeder_point(
    feeder_point_id: str,
    payload: FeederPointUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("manage_feeder_points")),
):
    point = _get_feeder_point(db, feeder_point_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(point, key, value)
    point.updated_at = utcnow()
    point.updated_by = user.id
    db.commit()
    db.refresh(point)
    return point


@router.delete("/{feeder_point_id}")
def delete_feeder_point(
    feeder_point_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("manage_feeder_points")),
):
    point = _get_feeder_point(db, feeder_point_id)
    if active_assignment_count(db, feeder_point_id=feeder_point_id):
        raise Conflict("Cannot delete feeder point with active assignments")
    db.delete(point)
    db.commit()
    logger.info("feeder_point_deleted", feeder_point_id=feeder_point_id, actor_id=user.id)
    return {"message": "Feeder point deleted successfully"}
