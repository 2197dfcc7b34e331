from typing import Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from profilevault.models import PasswordPayload, SaveDataPayload, StorageData
from profilevault.core.backends import StorageBackend
from profilevault.core.errors import StorageError

router = APIRouter()

_STATUS_BY_CODE = {
    "password_required": 423,
    "invalid_password": 401,
    "corrupted_data": 409,
    "storage_io": 500,
}


def get_backend(request: Request) -> StorageBackend:
    return request.app.state.backend


def _http_error(exc: StorageError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(exc.code, 500),
        detail={"code": exc.code, "message": str(exc)},
    )


# --- Delegated storage surface ---
@router.post("/storage/password")
async def set_storage_password(payload: PasswordPayload, backend: StorageBackend = Depends(get_backend)):
    """
    Empty or null password locks the host store and drops the held password.
    """
    password = payload.password or None
    await backend.set_password(password)
    return {"status": "unlocked" if password else "locked"}


@router.post("/storage/data")
async def save_data(payload: SaveDataPayload, backend: StorageBackend = Depends(get_backend)):
    try:
        await backend.save(payload.data, payload.use_password)
    except StorageError as exc:
        raise _http_error(exc)
    return {"status": "ok"}


@router.get("/storage/data", response_model=Optional[StorageData])
async def load_data(backend: StorageBackend = Depends(get_backend)):
    try:
        return await backend.load()
    except StorageError as exc:
        raise _http_error(exc)


@router.get("/storage/has-data")
async def has_stored_data(backend: StorageBackend = Depends(get_backend)) -> Dict[str, bool]:
    try:
        return {"has_data": await backend.has_stored_data()}
    except StorageError as exc:
        raise _http_error(exc)


@router.get("/storage/encrypted")
async def is_storage_encrypted(backend: StorageBackend = Depends(get_backend)) -> Dict[str, bool]:
    try:
        return {"encrypted": await backend.is_encrypted()}
    except StorageError as exc:
        raise _http_error(exc)


@router.delete("/storage/data")
async def clear_storage(backend: StorageBackend = Depends(get_backend)):
    try:
        await backend.clear()
    except StorageError as exc:
        raise _http_error(exc)
    return {"status": "ok"}
