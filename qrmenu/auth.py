import os
from pathlib import Path
from dotenv import load_dotenv
from fastapi import Header, HTTPException
from jose import JWTError, jwt

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


def get_current_owner(authorization: str = Header(None)) -> str:
    """Return the owner id carried by the bearer token."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    try:
        claims = jwt.decode(parts[1], secret, algorithms=["HS256"])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    owner_id = claims.get("sub") or claims.get("ownerId")
    if not owner_id:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return str(owner_id)
