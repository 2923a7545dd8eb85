from .db import Base
from .photo import Photo

__all__ = ["Base", "Photo"]
