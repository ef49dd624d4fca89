import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from medbook.auth import jwt_handler
from medbook.models.user import Role, User
from medbook.routes.common import get_db
from medbook.scheduling.actors import Actor
from medbook.scheduling.doctors import get_doctor_for_user

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def build_actor(user: User, db: Session) -> Actor:
    try:
        role = Role((user.role or "").strip().lower())
    except ValueError as exc:
        raise HTTPException(status_code=403, detail="Unknown user role") from exc

    doctor_id = None
    if role == Role.DOCTOR:
        doctor = get_doctor_for_user(db, user.id)
        doctor_id = doctor.id if doctor else None
    return Actor(user_id=user.id, role=role, doctor_id=doctor_id)


def get_current_actor(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Actor:
    return build_actor(current_user, db)
