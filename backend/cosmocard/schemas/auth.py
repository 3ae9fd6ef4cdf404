"""Request/response models for the email one-time code endpoints."""

from typing import Optional

from cosmocard.schemas.common import CamelModel


class SendCodeRequest(CamelModel):
    email: str = ""
    name: str = ""


class LoginRequest(CamelModel):
    email: str = ""


class VerifyCodeRequest(CamelModel):
    email: str = ""
    code: str = ""


class VerifyTokenRequest(CamelModel):
    token: str = ""


class UserOut(CamelModel):
    user_id: str
    email: Optional[str] = None
    name: str = ""
    channel: str = ""
    role: str = "user"

    @classmethod
    def from_user(cls, user) -> "UserOut":
        return cls(
            user_id=user.user_id,
            email=user.email,
            name=user.display_name,
            channel=user.channel_name,
            role=user.role,
        )


class SendCodeResponse(CamelModel):
    success: bool = True
    message: str
    # Present only outside production
    code: Optional[str] = None


class AuthResponse(CamelModel):
    success: bool = True
    token: str
    user: UserOut


class VerifyTokenResponse(CamelModel):
    success: bool = True
    user: UserOut
