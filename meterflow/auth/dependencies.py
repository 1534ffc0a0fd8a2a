from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from meterflow.auth.jwt import token_service

security = HTTPBearer(auto_error=False)


class CallerIdentity(BaseModel):
	staff_id: str
	role: Optional[str] = None


async def get_identity(
		request: Request,
		credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[CallerIdentity]:
	"""Identity supplied by the caller, if any"""
	if credentials is None:
		return None

	payload = token_service.decode_token(credentials.credentials)
	if not payload or not payload.get("sub"):
		raise HTTPException(
			status_code=status.HTTP_401_UNAUTHORIZED,
			detail="Invalid authentication credentials",
			headers={"WWW-Authenticate": "Bearer"}
		)

	identity = CallerIdentity(staff_id=str(payload["sub"]), role=payload.get("role"))
	request.state.staff_id = identity.staff_id
	return identity


async def require_identity(
		identity: Optional[CallerIdentity] = Depends(get_identity),
) -> CallerIdentity:
	if identity is None:
		raise HTTPException(
			status_code=status.HTTP_401_UNAUTHORIZED,
			detail="Not authenticated",
			headers={"WWW-Authenticate": "Bearer"}
		)
	return identity


def staff_id_of(identity: Optional[CallerIdentity]) -> Optional[str]:
	return identity.staff_id if identity else None
