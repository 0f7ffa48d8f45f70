import os, mimetypes
from pathlib import Path
from uuid import uuid4


def save_uploaded_file(djangofile, staging_root) -> Path:
    """Save to <staging_root>/originals/<uuid><ext> and return the absolute path."""
    originals_dir = Path(staging_root) / "originals"
    originals_dir.mkdir(parents=True, exist_ok=True)
    ext = Path(os.path.basename(djangofile.name)).suffix.lower()
    dest = originals_dir / f"{uuid4().hex}{ext}"
    with open(dest, "wb") as f:
        for chunk in djangofile.chunks():
            f.write(chunk)
    return dest


def guess_kind(path: str) -> str:
    """Return 'image' | 'video' | 'other' based on mimetype/extension."""
    mime, _ = mimetypes.guess_type(path)
    if not mime:
        return "other"
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("video/"):
        return "video"
    return "other"


def is_video_upload(djangofile) -> bool:
    """Accept a declared video/* type, or a video file name when the client sent none."""
    content_type = getattr(djangofile, "content_type", None) or ""
    if content_type.startswith("video/"):
        return True
    return content_type in ("", "application/octet-stream") and guess_kind(djangofile.name) == "video"
