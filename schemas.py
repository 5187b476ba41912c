"""
Database Schemas for the video sharing backend

Each Pydantic model maps to a MongoDB collection. The collection name is the lowercase of the class name.

Collections:
- User -> user
- Video -> video
- Post -> post
- Comment -> comment
- Like -> like
- Subscription -> subscription
- View -> view
- Playlist -> playlist
- Notification -> notification
- Tag -> tag
- Analytics -> analytics

Request bodies live at the bottom of the module.
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

VIDEO_CATEGORIES = (
    "Music",
    "Education",
    "Comedy",
    "Sports",
    "Gaming",
    "News",
    "Entertainment",
    "Lifestyle",
    "Other",
)
Category = Literal[
    "Music", "Education", "Comedy", "Sports", "Gaming", "News", "Entertainment", "Lifestyle", "Other",
]

NOTIFICATION_TYPES = (
    "subscription",
    "like",
    "comment",
    "video_upload",
    "mention",
    "playlist_added",
)
NotificationType = Literal["subscription", "like", "comment", "video_upload", "mention", "playlist_added"]

USERNAME_PATTERN = r"^[a-z0-9_-]+$"


class LikeKind(str, Enum):
    VIDEO = "video"
    POST = "post"
    COMMENT = "comment"


class CommentKind(str, Enum):
    VIDEO = "video"
    POST = "post"


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True)


class Target(Document):
    """Polymorphic reference: one of video/post/comment plus its id."""
    kind: LikeKind
    id: ObjectId


# -------------------- Collections --------------------
class User(Document):
    username: str = Field(..., min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=50)
    avatar: str
    cover_image: Optional[str] = None
    bio: str = Field("", max_length=200)
    password_hash: str = Field(..., description="Bcrypt hash")
    refresh_token: Optional[str] = None
    watch_history: List[ObjectId] = Field(default_factory=list, max_length=100)
    subscribers_count: int = Field(0, ge=0)
    is_email_verified: bool = False

    @field_validator("username", "email", mode="before")
    @classmethod
    def _normalize(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("full_name", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class Video(Document):
    owner: ObjectId
    video_file: str
    thumbnail: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    duration: Optional[float] = Field(None, ge=0)
    views: int = Field(0, ge=0)
    likes_count: int = Field(0, ge=0)
    comments_count: int = Field(0, ge=0)
    category: Category = "Other"
    tags: List[ObjectId] = Field(default_factory=list)
    is_published: bool = False
    subscribers_only: bool = False
    published_at: Optional[datetime] = None


class Post(Document):
    owner: ObjectId
    content: str = Field(..., min_length=1, max_length=1000)
    likes_count: int = Field(0, ge=0)
    comments_count: int = Field(0, ge=0)
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None


class Comment(Document):
    owner: ObjectId
    target: Target
    content: str = Field(..., min_length=1, max_length=500)
    parent_comment: Optional[ObjectId] = None
    likes_count: int = Field(0, ge=0)
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None


class Like(Document):
    liked_by: ObjectId
    target: Target
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None


class Subscription(Document):
    subscriber: ObjectId = Field(..., description="The user id of the subscriber")
    channel: ObjectId = Field(..., description="The user id of the channel being subscribed to")
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _not_self(self):
        if self.subscriber == self.channel:
            raise ValueError("Cannot subscribe to yourself")
        return self


class View(Document):
    video: ObjectId
    viewer: Optional[ObjectId] = None
    ip_address: Optional[str] = Field(None, max_length=45)

    @model_validator(mode="after")
    def _one_identity(self):
        # Authenticated views are keyed by viewer only; the IP is kept for anonymous ones.
        if self.viewer is not None:
            self.ip_address = None
        elif not self.ip_address:
            raise ValueError("A view needs a viewer or an IP address")
        return self


class Playlist(Document):
    owner: ObjectId
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    videos: List[ObjectId] = Field(default_factory=list)
    thumbnail: Optional[str] = None
    is_public: bool = True
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None


class Notification(Document):
    user: ObjectId
    from_user: ObjectId
    type: NotificationType
    message: str = Field(..., min_length=1, max_length=200)
    video: Optional[ObjectId] = None
    post: Optional[ObjectId] = None
    comment: Optional[ObjectId] = None
    is_read: bool = False


class Tag(Document):
    name: str = Field(..., min_length=2, max_length=50)
    usage_count: int = Field(0, ge=0)

    @field_validator("name", mode="before")
    @classmethod
    def _normalize(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class Analytics(Document):
    video: ObjectId
    date: datetime
    views: int = Field(0, ge=0)
    likes: int = Field(0, ge=0)
    comments: int = Field(0, ge=0)


# -------------------- Requests --------------------
class LoginRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    password: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _identifier(self):
        if not self.username and not self.email:
            raise ValueError("Username or email is required")
        return self


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=50)
    bio: Optional[str] = Field(None, max_length=200)
    email: Optional[EmailStr] = None


class ChangePasswordRequest(BaseModel):
    old_password: str
    new_password: str = Field(..., min_length=8)


class VideoUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    category: Optional[Category] = None
    tags: Optional[List[str]] = None
    subscribers_only: Optional[bool] = None


class SubscribeRequest(BaseModel):
    channel_id: str


class CommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=500)
    parent_comment: Optional[str] = None


class CommentUpdateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=500)


class PostRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)


class PlaylistUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_public: Optional[bool] = None


class TagRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
