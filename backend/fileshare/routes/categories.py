"""Categories API routes."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fileshare.database import get_db
from fileshare.dependencies import require_admin
from fileshare.models.category import Category
from fileshare.schemas.file import CategoryCreate, CategoryResponse

router = APIRouter(prefix="/api/categories", tags=["categories"])


@router.get("", response_model=list[CategoryResponse])
async def list_categories(db: AsyncSession = Depends(get_db)):
    """List all categories by name."""
    result = await db.execute(select(Category).order_by(Category.name))
    return result.scalars().all()


@router.post(
    "",
    response_model=CategoryResponse,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
async def create_category(
    body: CategoryCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a new category."""
    existing = await db.execute(select(Category).where(Category.name == body.name))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Category already exists")

    category = Category(**body.model_dump())
    db.add(category)
    await db.commit()
    await db.refresh(category)
    return category
