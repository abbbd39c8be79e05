from fastapi import APIRouter, UploadFile, File, Depends
from app.config import settings
from app.errors import StoreUnavailable, ValidationFailed
from app.security import get_current_user
import os, uuid

router = APIRouter()

_PHOTO_EXTS = {".jpg", ".jpeg", ".png", ".webp"}


@router.post("/upload")
async def upload_photo(file: UploadFile = File(...), user_id: str = Depends(get_current_user)):
    # listing photos go to the local blob directory; the URL stays stable
    ext = os.path.splitext(file.filename or "")[1].lower()
    if ext not in _PHOTO_EXTS:
        raise ValidationFailed("Unsupported photo type")
    base_dir = os.path.join(os.getcwd(), settings.UPLOAD_DIR)
    os.makedirs(base_dir, exist_ok=True)
    fname = f"{uuid.uuid4().hex}{ext}"
    fpath = os.path.join(base_dir, fname)
    try:
        with open(fpath, "wb") as f:
            f.write(await file.read())
    except OSError:
        raise StoreUnavailable("Photo could not be saved")
    url = f"/{settings.UPLOAD_DIR.strip('/')}/{fname}"
    return {"url": url}
