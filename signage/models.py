from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

class MediaItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    path: str
    type: str  # image, video, ... (producer defined)

class ChannelMessage(BaseModel):
    """Inbound envelope pushed over the live update channel."""
    model_config = ConfigDict(extra="ignore")

    type: str
    media: Optional[List[MediaItem]] = None

class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"

class ChannelView(BaseModel):
    current_item: Optional[MediaItem] = None
    loading: bool = True
    server_ready: bool = False
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    total_items: int = 0

class RemoteFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str
    mime_type: str = Field(default="", alias="mimeType")
    parents: List[str] = Field(default_factory=list)

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

class MirrorState(BaseModel):
    last_successful_sync: float = 0.0
    last_attempt_at: float = 0.0
    last_error: Optional[str] = None
    consecutive_failures: int = 0
    last_file_count: int = 0
    total_downloaded: int = 0
    total_removed: int = 0
    paused: bool = False
