from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select, and_

from atelier import models
from atelier.auth_utils import decode_access_token
from atelier.context import Actor
from atelier.db import database
from atelier.enums import MachineType, UserRole
from atelier.errors import NotFoundError, PermissionDeniedError

_bearer = HTTPBearer(auto_error=False)


async def get_current_actor(creds: HTTPAuthorizationCredentials | None = Depends(_bearer)) -> Actor:
    if creds is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_access_token(creds.credentials)
        user_id = int(payload["sub"])
    except (ValueError, KeyError):
        raise HTTPException(status_code=401, detail="Invalid token")

    utbl = models.User.__table__
    row = await database.fetch_one(
        select(utbl.c.id, utbl.c.role).where(and_(utbl.c.id == user_id, utbl.c.is_active.is_(True)))
    )
    if not row:
        raise HTTPException(status_code=401, detail="Unknown or inactive user")

    mtbl = models.UserMachine.__table__
    machines = await database.fetch_all(select(mtbl.c.machine).where(mtbl.c.user_id == user_id))
    return Actor(
        id=int(row["id"]),
        role=UserRole(row["role"]),
        machines=frozenset(MachineType(m["machine"]) for m in machines),
    )


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return actor


async def check_devis_access(devis_id: int, actor: Actor) -> None:
    # un employé ne voit et ne modifie que ses propres devis
    if actor.is_admin:
        return
    dtbl = models.Devis.__table__
    owner = await database.fetch_val(select(dtbl.c.created_by_id).where(dtbl.c.id == devis_id))
    if owner is None:
        raise NotFoundError("Quote not found")
    if owner != actor.id:
        raise PermissionDeniedError("Quote belongs to another user")
