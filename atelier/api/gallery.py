from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func
from sqlmodel import Session, select

from atelier.api.deps import require_permission
from atelier.core.database import get_db
from atelier.core.rate_limit import rate_limit
from atelier.models import GalleryItem, User
from atelier.schemas import GalleryItemCreate, GalleryItemUpdate
from atelier.services.activity import log_activity

router = APIRouter(prefix="/api/gallery", tags=["gallery"])


def item_summary(item: GalleryItem) -> dict:
    return {
        "id": item.id,
        "image_url": item.image_url,
        "thumbnail_url": item.thumbnail_url or item.image_url,
        "title": item.title,
        "description": item.description,
        "category": item.category,
        "is_featured": item.is_featured,
        "display_order": item.display_order,
        "created_at": item.created_at.isoformat() if item.created_at else None,
    }


@router.get("", dependencies=[Depends(rate_limit("get_gallery", 100, 60))])
def list_gallery(
    category: str | None = None,
    featured: bool | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    db: Session = Depends(get_db),
):
    stmt = select(GalleryItem)
    count_stmt = select(func.count()).select_from(GalleryItem)
    if category and category != "all":
        stmt = stmt.where(GalleryItem.category == category)
        count_stmt = count_stmt.where(GalleryItem.category == category)
    if featured is not None:
        stmt = stmt.where(GalleryItem.is_featured == featured)
        count_stmt = count_stmt.where(GalleryItem.is_featured == featured)
    total = db.exec(count_stmt).one()
    items = db.exec(
        stmt.order_by(GalleryItem.display_order, GalleryItem.created_at.desc(), GalleryItem.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    rows = db.exec(select(GalleryItem.category, func.count()).group_by(GalleryItem.category)).all()
    counts = {cat: n for cat, n in rows}
    counts["all"] = sum(counts.values())
    return {
        "success": True,
        "items": [item_summary(i) for i in items],
        "categories": counts,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }


@router.post("", status_code=201, dependencies=[Depends(rate_limit("gallery_upload", 20, 3600))])
def add_item(
    body: GalleryItemCreate,
    request: Request,
    admin: User = Depends(require_permission("manage_gallery")),
    db: Session = Depends(get_db),
):
    item = GalleryItem(
        image_url=body.image,
        thumbnail_url=body.thumbnail or body.image,
        title=body.title,
        description=body.description,
        category=body.category,
        is_featured=body.is_featured,
        display_order=body.display_order,
        uploaded_by=admin.id,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    log_activity(db, admin.id, "GALLERY_ITEM_ADDED", "gallery", item.id, {"title": item.title, "category": item.category}, request)
    return {"success": True, "item": item_summary(item)}


@router.get("/{item_id}")
def get_item(item_id: int, db: Session = Depends(get_db)):
    item = db.get(GalleryItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Gallery item not found")
    return {"success": True, "item": item_summary(item)}


@router.patch("/{item_id}")
def update_item(
    item_id: int,
    body: GalleryItemUpdate,
    request: Request,
    admin: User = Depends(require_permission("manage_gallery")),
    db: Session = Depends(get_db),
):
    item = db.get(GalleryItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Gallery item not found")
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No valid fields to update")
    for field, value in changes.items():
        setattr(item, field, value)
    db.add(item)
    db.commit()
    db.refresh(item)
    log_activity(db, admin.id, "GALLERY_ITEM_UPDATED", "gallery", item.id, {"fields": sorted(changes)}, request)
    return {"success": True, "item": item_summary(item)}


@router.delete("/{item_id}")
def delete_item(
    item_id: int,
    request: Request,
    admin: User = Depends(require_permission("manage_gallery")),
    db: Session = Depends(get_db),
):
    item = db.get(GalleryItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Gallery item not found")
    title = item.title
    db.delete(item)
    db.commit()
    log_activity(db, admin.id, "GALLERY_ITEM_DELETED", "gallery", item_id, {"title": title}, request)
    return {"success": True, "message": "Gallery item deleted"}
