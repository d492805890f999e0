# routes/auth.py
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
import logging

import config

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


async def get_current_user(token: str = Depends(oauth2_scheme)):
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError as e:
        logger.error(f"JWTError: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("id")
    role = payload.get("role")
    if not user_id or not role:
        logger.error("Invalid token: Missing user_id or role")
        raise HTTPException(status_code=401, detail="Invalid token")
    return {"id": user_id, "role": role}


def require_role(*roles: str):
    async def checker(current_user: dict = Depends(get_current_user)):
        if current_user["role"] not in roles:
            logger.warning(f"User {current_user['id']} with role {current_user['role']} denied, needs {roles}")
            raise HTTPException(status_code=403, detail=f"Only {' or '.join(roles)} users can perform this action")
        return current_user
    return checker
