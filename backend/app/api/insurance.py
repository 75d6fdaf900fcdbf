"""Payer rate endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from backend.app.core.permissions import require_capability
from backend.app.db.session import get_db
from backend.app.models.insurance import Insurance
from backend.app.models.user import User
from backend.app.schemas.insurance import InsuranceCreate, InsuranceRead, InsuranceUpdate
from backend.app.services.audit import record_audit

router = APIRouter(prefix="/insurance", tags=["insurance"])


def _validate_rates(values: dict) -> None:
    for field in ("rate_per_unit", "regular_rate_per_unit", "supervisory_rate_per_unit"):
        value = values.get(field)
        if value is not None and value <= 0:
            raise HTTPException(status_code=400, detail=f"{field} must be positive")
    for field in ("regular_unit_minutes", "supervisory_unit_minutes"):
        value = values.get(field)
        if value is not None and value <= 0:
            raise HTTPException(status_code=400, detail=f"{field} must be positive")


@router.post("/", response_model=InsuranceRead, status_code=status.HTTP_201_CREATED)
async def create_insurance(
    insurance_in: InsuranceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("insurance.manage")),
):
    values = insurance_in.model_dump()
    _validate_rates(values)
    insurance = Insurance(**values)
    db.add(insurance)
    db.flush()
    record_audit(db, "CREATE", "Insurance", insurance.id, current_user.id, {"name": insurance.name})
    db.commit()
    db.refresh(insurance)
    return insurance


@router.get("/", response_model=list[InsuranceRead])
async def list_insurance(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("invoices.view")),
):
    return db.query(Insurance).filter(Insurance.deleted_at.is_(None)).order_by(Insurance.name.asc()).all()


@router.patch("/{insurance_id}", response_model=InsuranceRead)
async def update_insurance(
    insurance_id: int,
    payload: InsuranceUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("insurance.manage")),
):
    insurance = (
        db.query(Insurance).filter(Insurance.id == insurance_id, Insurance.deleted_at.is_(None)).first()
    )
    if not insurance:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Insurance not found")

    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and not changes["name"]:
        raise HTTPException(status_code=400, detail="name cannot be empty")
    _validate_rates(changes)
    for field, value in changes.items():
        setattr(insurance, field, value)
    record_audit(db, "UPDATE", "Insurance", insurance.id, current_user.id, {"fields": sorted(changes)})
    db.commit()
    db.refresh(insurance)
    return insurance
