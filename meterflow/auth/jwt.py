import logging
from datetime import timedelta, datetime, timezone
from typing import Dict, Any, Optional
from jose import JWTError, jwt

from meterflow.config import settings

logger = logging.getLogger(__name__)


class TokenService:
	"""Bearer tokens are issued by the identity provider; this side only
	reads them. ``create_token`` exists for local tooling and tests."""

	@staticmethod
	def create_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
		to_encode = data.copy()
		expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=24))
		to_encode.update({"exp": expire, "type": "access"})
		return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

	@staticmethod
	def decode_token(token: str) -> Optional[Dict[str, Any]]:
		"""Decode and validate JWT token"""
		try:
			return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
		except JWTError as e:
			logger.warning(f"JWT decode error: {e}")
			return None


token_service = TokenService()
