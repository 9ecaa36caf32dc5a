from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from ..notifier import Notifier
from ..vehicles import SqlVehicleDirectory


@dataclass(frozen=True)
class Caller:
    """Identity handed over by the authentication layer in front of this service."""
    user_id: str
    role: str = "USER"

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


def get_db(req: Request):
    db: Session = req.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_notifier(req: Request) -> Notifier:
    return req.app.state.notifier


def get_directory(db: Session = Depends(get_db)) -> SqlVehicleDirectory:
    return SqlVehicleDirectory(db)


def get_caller(
    x_user_id: str | None = Header(default=None),
    x_user_role: str = Header(default="USER"),
) -> Caller:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="unauthorized")
    return Caller(user_id=x_user_id, role=x_user_role.upper())


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="forbidden")
    return caller
