from functools import lru_cache

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

from authgate.core.policy import AccessPolicy


class MailSettings(BaseModel):
    sender: str = Field("no-reply@authgate.io", description="From address for OTP mail")
    host: str = Field("localhost", description="SMTP host")
    port: int = Field(587, description="SMTP port")
    username: str = ""
    password: str = ""
    use_tls: bool = True
    suppress_send: bool = Field(False, description="Build messages but never hand them to SMTP")


class Settings(BaseSettings):
    api_title: str = "Auth Gateway"
    api_version: str = "1.0.0"
    log_level: str = "INFO"

    database_url: str = Field(..., description="SQLAlchemy async URL")
    secret_key: str = Field(..., description="Key for OTP digests")
    store_timeout_seconds: float = 5.0

    session_cookie_name: str = "session_token"
    cookie_domain: str | None = None
    cookie_secure: bool = True
    session_ttl_hours: int = 24
    remember_me_ttl_days: int = 30

    otp_ttl_seconds: int = 600
    otp_max_attempts: int = 5
    password_min_length: int = 8
    password_max_length: int = 128

    protected_prefixes: list[str] = ["/dashboard"]
    sign_in_path: str = "/sign-in"

    enforce_https: bool = True
    hsts_max_age: int = 31536000

    csrf_cookie_name: str = "csrf_token"
    csrf_header_name: str = "x-csrf-token"

    mail: MailSettings = MailSettings()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"

    @model_validator(mode="after")
    def _check_access_policy(self) -> "Settings":
        # raises when the sign-in page would itself be gated
        self.access_policy()
        return self

    def access_policy(self) -> AccessPolicy:
        return AccessPolicy.build(self.protected_prefixes, self.sign_in_path)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
