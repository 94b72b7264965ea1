from fastapi import APIRouter, Depends

from counseling.auth.dependencies import get_current_actor
from counseling.scheduling.state_machine import Actor

router = APIRouter(tags=['auth'])


@router.get("/me")
def me(actor: Actor = Depends(get_current_actor)):
    return {"id": actor.id, "role": actor.role.value}
