"""Request bodies for the auth routes (camelCase on the wire)."""

from pydantic import BaseModel, ConfigDict, EmailStr, Field

REFRESH_TOKEN_PATTERN = r"^[a-f0-9]+$"
REFRESH_TOKEN_LENGTH = 128


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=False)


class RegisterBody(_Body):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)
    name: str = Field(..., min_length=1, max_length=200)


class LoginBody(_Body):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)


class RefreshBody(_Body):
    refresh_token: str = Field(
        ...,
        alias="refreshToken",
        min_length=REFRESH_TOKEN_LENGTH,
        max_length=REFRESH_TOKEN_LENGTH,
        pattern=REFRESH_TOKEN_PATTERN,
    )


class LogoutBody(_Body):
    refresh_token: str | None = Field(
        None,
        alias="refreshToken",
        min_length=REFRESH_TOKEN_LENGTH,
        max_length=REFRESH_TOKEN_LENGTH,
        pattern=REFRESH_TOKEN_PATTERN,
    )
    all_devices: bool = Field(False, alias="allDevices")


class ChangePasswordBody(_Body):
    current_password: str = Field(..., alias="currentPassword", min_length=1)
    new_password: str = Field(..., alias="newPassword", min_length=1)


class DeleteAccountBody(_Body):
    password: str = Field(..., min_length=1)
