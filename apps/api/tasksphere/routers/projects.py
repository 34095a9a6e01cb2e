from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasksphere.deps import get_current_user, get_db, require_list_member
from tasksphere.models import Project, User
from tasksphere.schemas import ProjectCreateIn, ProjectOut

router = APIRouter(tags=["projects"])


def _project_out(p: Project) -> ProjectOut:
  return ProjectOut(id=p.id, taskListId=p.list_id, name=p.name, createdAt=p.created_at)


@router.get("/task-lists/{list_id}/projects", response_model=list[ProjectOut])
async def list_projects(
  list_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[ProjectOut]:
  await require_list_member(list_id, user, db)
  res = await db.execute(select(Project).where(Project.list_id == list_id).order_by(Project.name.asc()))
  return [_project_out(p) for p in res.scalars().all()]


@router.post("/task-lists/{list_id}/projects", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project(
  list_id: str,
  payload: ProjectCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProjectOut:
  await require_list_member(list_id, user, db)
  p = Project(list_id=list_id, name=payload.name)
  db.add(p)
  await db.commit()
  return _project_out(p)


@router.delete("/projects/{project_id}")
async def delete_project(
  project_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  res = await db.execute(select(Project).where(Project.id == project_id))
  p = res.scalar_one_or_none()
  if not p:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
  await require_list_member(p.list_id, user, db)
  await db.delete(p)
  await db.commit()
  return {"ok": True}
