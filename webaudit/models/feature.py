from enum import Enum
from pydantic import BaseModel, ConfigDict


class FeatureCategory(str, Enum):
    CRAWLING = "crawling"
    CONTENT = "content"
    SECURITY = "security"
    MEDIA = "media"
    TECHNICAL = "technical"


class Feature(BaseModel):
    """Static catalog entry. Compiled into the app, never stored per user."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    category: FeatureCategory
    is_core: bool = False  # offered on every plan tier
