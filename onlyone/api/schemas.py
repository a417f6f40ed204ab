from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar
from pydantic import BaseModel, Field, model_validator

T = TypeVar("T")

DreamType = Literal["night_dream", "daydream", "lucid_dream", "nightmare"]
Scope = Literal["city", "state", "country", "world"]
PostType = Literal["action", "day"]


class BackendRow(BaseModel):
    @model_validator(mode="before")
    @classmethod
    def nulls_as_defaults(cls, data: Any) -> Any:
        # Backend rows carry explicit nulls; those read as the field default
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class RemoteError(BaseModel):
    message: str = ""
    code: Optional[str] = None  # PostgREST / GoTrue error code, e.g. "23505"
    status: Optional[int] = None


class GatewayResult(BaseModel, Generic[T]):
    data: Optional[T] = None
    error: Optional[RemoteError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Identity(BaseModel):
    id: str
    email: Optional[str] = None
    phone: Optional[str] = None


class AuthSession(BaseModel):
    access_token: str
    refresh_token: str = ""
    expires_at: Optional[int] = None  # epoch seconds
    user: Identity


class Profile(BackendRow):
    id: str
    username: str = ""
    first_name: str = ""
    last_name: str = ""
    date_of_birth: Optional[str] = None
    avatar_url: Optional[str] = None


class DreamInterpretation(BackendRow):
    title: str = ""
    meaning: str = ""
    emotionalGuidance: str = ""
    comfortMessage: str = ""
    actionAdvice: str = ""
    hopeMessage: str = ""
    isPositive: bool = True
    confidence: float = 0.0


class DreamPost(BackendRow):
    id: str
    content: str = ""
    dream_type: Optional[str] = None
    symbols: List[str] = Field(default_factory=list)
    emotions: List[str] = Field(default_factory=list)
    clarity: int = 0
    interpretation: Optional[DreamInterpretation] = None
    scope: Optional[str] = None
    location_city: Optional[str] = None
    location_state: Optional[str] = None
    location_country: Optional[str] = None
    matchCount: int = 0
    totalInScope: int = 0
    tier: str = ""
    percentile: float = 0.0
    created_at: Optional[str] = None


class CreateDreamRequest(BaseModel):
    content: str
    dreamType: DreamType
    symbols: List[str] = Field(default_factory=list)
    emotions: List[str] = Field(default_factory=list)
    clarity: int = Field(ge=1, le=10)
    interpretation: Optional[str] = None
    isAnonymous: bool = False
    scope: Scope = "world"
    locationCity: Optional[str] = None
    locationState: Optional[str] = None
    locationCountry: Optional[str] = None


class CreatePostRequest(BaseModel):
    content: str
    inputType: PostType = "action"
    scope: Scope = "world"
    location: Optional[Dict[str, Optional[str]]] = None


class CreatedPost(BackendRow):
    id: str
    content: str = ""
    tier: str = ""
    percentile: float = 0.0
    displayText: str = ""
    matchCount: int = 0
    createdAt: Optional[str] = None
    analytics: Dict[str, Any] = Field(default_factory=dict)
