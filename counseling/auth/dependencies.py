import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from counseling.auth import jwt_handler
from counseling.models.user import Role
from counseling.scheduling.state_machine import Actor

security = HTTPBearer()

# Only humans log in; the system role is reserved for scheduled jobs.
TOKEN_ROLES = {Role.STUDENT, Role.COUNSELOR, Role.ADMIN}


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    try:
        actor_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=401, detail="Invalid token subject") from exc

    try:
        role = Role(payload.get("role"))
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid token role") from exc
    if role not in TOKEN_ROLES:
        raise HTTPException(status_code=401, detail="Invalid token role")

    return Actor(id=actor_id, role=role)
