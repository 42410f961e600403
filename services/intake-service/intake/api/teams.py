from typing import List
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from intake.api.deps import get_identity, get_team_repository, require_admin
from intake.services.directory import TeamRepository
from intake.services.session import Identity

router = APIRouter(prefix="/teams", tags=["Teams"])

class TeamCreate(BaseModel):
    name: str = Field(..., description="Team name, unique regardless of case.")


@router.get("", response_model=List[str])
def list_teams(identity: Identity = Depends(get_identity), teams: TeamRepository = Depends(get_team_repository)):
    return teams.list()


@router.post("", response_model=str, status_code=status.HTTP_201_CREATED)
def add_team(
    team_in: TeamCreate,
    identity: Identity = Depends(require_admin),
    teams: TeamRepository = Depends(get_team_repository),
):
    return teams.add(team_in.name, actor=identity.username)


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
def delete_team(
    name: str,
    identity: Identity = Depends(require_admin),
    teams: TeamRepository = Depends(get_team_repository),
):
    teams.delete(name, actor=identity.username)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
