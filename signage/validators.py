from pathlib import PurePosixPath
from typing import Iterable, Optional, Set
from .config import settings

def parse_extensions(raw: str) -> Set[str]:
    return {e.strip().lower().lstrip(".") for e in raw.split(",") if e.strip()}

def ext(name: str) -> str:
    return PurePosixPath(name).suffix.lower().lstrip(".")

def is_valid_file(name: str, allowed: Optional[Iterable[str]] = None) -> bool:
    """Filename filter applied to remote entries before they are mirrored."""
    if not name or name.startswith("."):
        return False
    if "/" in name or "\\" in name:
        return False
    allowed_set = set(allowed) if allowed is not None else parse_extensions(settings.ALLOWED_EXTENSIONS)
    return ext(name) in allowed_set
