"""
Core data models for the GPT Toolkit client.

This module defines the session state, the authentication payloads exchanged
with the backend, and the content-generation payloads used by the WordPress
feature. Wire keys are camelCase; attributes are snake_case.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List, Optional, Dict, Any, Type, TypeVar
from enum import Enum

T = TypeVar("T")


def _require(data: Dict[str, Any], key: str, expected: Type[T]) -> T:
    """Fetch a mandatory field, raising ValueError on absence or type mismatch."""
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    if key not in data:
        raise ValueError(f"Missing required field '{key}'")
    value = data[key]
    # bool is an int subclass; keep numeric and boolean fields apart
    if isinstance(value, bool) and expected is not bool:
        raise ValueError(f"Field '{key}' has wrong type bool")
    if not isinstance(value, expected):
        raise ValueError(f"Field '{key}' has wrong type {type(value).__name__}")
    return value


def _optional(data: Dict[str, Any], key: str, expected: Type[T]) -> Optional[T]:
    """Fetch an optional field; null and absent both map to None."""
    if isinstance(data, dict) and data.get(key) is None:
        return None
    return _require(data, key, expected)


class AuthState(Enum):
    """Authentication state of the session."""
    LOGGED_OUT = "logged_out"
    BOOTSTRAPPING = "bootstrapping"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


class EmptyResponse:
    """Marker response type for endpoints that answer with no content."""

    def __eq__(self, other):
        return isinstance(other, EmptyResponse)

    def __repr__(self):
        return "EmptyResponse()"


@dataclass
class User:
    """Profile of the signed-in user."""
    id: str
    email: str
    name: str
    wp_auth_status: Optional[bool] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("User ID cannot be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        """Create from API response dict."""
        # Legacy spelling is read when the canonical key is absent or null
        wp_auth_status = _optional(data, "wpAuthStatus", bool)
        if wp_auth_status is None:
            wp_auth_status = _optional(data, "WPAuthStatus", bool)

        return cls(
            id=_require(data, "id", str),
            email=_require(data, "email", str),
            name=_require(data, "name", str),
            wp_auth_status=wp_auth_status,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id, "email": self.email, "name": self.name}
        if self.wp_auth_status is not None:
            result["wpAuthStatus"] = self.wp_auth_status
        return result


@dataclass(frozen=True)
class Session:
    """Snapshot of the process-lifetime session state."""
    auth_state: AuthState = AuthState.LOGGED_OUT
    access_token: Optional[str] = field(default=None, repr=False)
    user: Optional[User] = None
    access_token_expires_at: Optional[datetime] = None

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state == AuthState.AUTHENTICATED


@dataclass
class AuthResponse:
    """Response of auth/login and auth/register."""
    user: User
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthResponse":
        return cls(
            user=User.from_dict(_require(data, "user", dict)),
            access_token=_require(data, "accessToken", str),
            refresh_token=_require(data, "refreshToken", str),
        )


@dataclass
class RefreshResponse:
    """Response of auth/refresh."""
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RefreshResponse":
        return cls(
            access_token=_require(data, "accessToken", str),
            refresh_token=_require(data, "refreshToken", str),
        )


@dataclass
class UserResponse:
    """Response of auth/me."""
    user: User

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserResponse":
        return cls(user=User.from_dict(_require(data, "user", dict)))


@dataclass
class LoginRequest:
    email: str
    password: str = field(repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"email": self.email, "password": self.password}


@dataclass
class RegisterRequest:
    name: str
    email: str
    password: str = field(repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "email": self.email, "password": self.password}


@dataclass
class RefreshRequest:
    refresh_token: str = field(repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"refreshToken": self.refresh_token}


# =============================================================================
# WordPress content generation
# =============================================================================

DEFAULT_CUSTOM_PROMPT = (
    "Write a very long and detailied blog post about {topic} with a concise and "
    "appealing title, a summary of the whole blog post right below, and the full "
    "content in the style of an expert with 15 years of experience without "
    "explicitly mentioning this."
)


@dataclass
class WordPressConfig:
    """Generation settings stored server-side per user."""
    model: str = "gpt-4.5-preview"
    use_custom_prompt: bool = False
    custom_prompt: str = DEFAULT_CUSTOM_PROMPT
    autosend: bool = False
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.35
    temperature: float = 0.7
    max_tokens: int = 4000
    reasoning_effort: str = "medium"

    _WIRE_KEYS = {
        "model": "model",
        "use_custom_prompt": "useCustomPrompt",
        "custom_prompt": "customPrompt",
        "autosend": "autosend",
        "frequency_penalty": "frequencyPenalty",
        "presence_penalty": "presencePenalty",
        "temperature": "temperature",
        "max_tokens": "maxTokens",
        "reasoning_effort": "reasoningEffort",
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WordPressConfig":
        """Create from API response dict."""
        return cls(
            model=_require(data, "model", str),
            use_custom_prompt=_require(data, "useCustomPrompt", bool),
            custom_prompt=_require(data, "customPrompt", str),
            autosend=_require(data, "autosend", bool),
            frequency_penalty=float(_require(data, "frequencyPenalty", (int, float))),
            presence_penalty=float(_require(data, "presencePenalty", (int, float))),
            temperature=float(_require(data, "temperature", (int, float))),
            max_tokens=_require(data, "maxTokens", int),
            reasoning_effort=_require(data, "reasoningEffort", str),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API request."""
        return {self._WIRE_KEYS[attr]: value for attr, value in asdict(self).items()}


@dataclass
class WordPressAuthStartResponse:
    auth_url: str
    state: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WordPressAuthStartResponse":
        return cls(
            auth_url=_require(data, "authUrl", str),
            state=_require(data, "state", str),
        )


@dataclass
class WordPressAuthStatusResponse:
    wp_auth_status: bool

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WordPressAuthStatusResponse":
        return cls(wp_auth_status=_require(data, "wpAuthStatus", bool))


@dataclass
class WordPressSiteURLResponse:
    site_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WordPressSiteURLResponse":
        return cls(site_url=_optional(data, "siteUrl", str))


@dataclass
class WordPressGenerateRequest:
    prompt: str
    model: str
    config: WordPressConfig
    site_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt": self.prompt,
            "siteUrl": self.site_url,
            "model": self.model,
            "config": self.config.to_dict(),
        }


@dataclass
class WordPressGeneration:
    title: str
    html_content: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WordPressGeneration":
        return cls(
            title=_require(data, "title", str),
            html_content=_require(data, "htmlContent", str),
        )


@dataclass
class WordPressGenerateResponse:
    generations: List[WordPressGeneration] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WordPressGenerateResponse":
        return cls(generations=[
            WordPressGeneration.from_dict(item)
            for item in _require(data, "generations", list)
        ])
