"""
admin/models.py -- Settings documents managed from the admin console.

Each class is one settings section persisted as a single JSON document by
SettingsStore. Field defaults are what the console shows before an admin has
saved anything, so an empty database behaves like a freshly configured one.

Numeric-looking policy values (minPasswordLength, maxLoginAttempts, ...) are
strings on the wire because the console edits them in text inputs. They are
validated as digit strings here and converted with int() where used.
"""

from __future__ import annotations

from typing import Annotated, ClassVar, Optional

from pydantic import Field, create_model

from core.models import CamelModel

_Digits = Annotated[str, Field(pattern=r"^\d+$", max_length=9)]
_Color = Annotated[str, Field(pattern=r"^#[0-9A-Fa-f]{3,8}$")]

SECRET_MASK = "********"


class SettingsSection(CamelModel):
    """Base for persisted settings sections. section names the storage row."""

    section: ClassVar[str]


class OrganizationSettings(SettingsSection):
    section: ClassVar[str] = "organization"

    organization_name: str = Field("pcvisor", min_length=1, max_length=200)
    tagline: Optional[str] = "Unified Access Control & Enterprise Management"
    logo_url: Optional[str] = None
    favicon_url: Optional[str] = None
    primary_color: _Color = "#0066FF"
    secondary_color: _Color = "#6366F1"
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    footer_text: Optional[str] = None
    copyright_text: Optional[str] = None


class PublicOrganization(CamelModel):
    """Branding subset served to unauthenticated pages (login screen)."""

    organization_name: str
    tagline: Optional[str] = None
    logo_url: Optional[str] = None
    favicon_url: Optional[str] = None
    primary_color: str
    secondary_color: str
    footer_text: Optional[str] = None
    copyright_text: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: OrganizationSettings) -> "PublicOrganization":
        return cls.model_validate(settings.model_dump(include=set(cls.model_fields)))


class SecuritySettings(SettingsSection):
    section: ClassVar[str] = "security"

    min_password_length: _Digits = "8"
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special_chars: bool = True
    password_expiry_days: _Digits = "90"
    password_history_count: _Digits = "5"
    max_login_attempts: _Digits = "5"
    lockout_duration_minutes: _Digits = "30"
    session_timeout_minutes: _Digits = "60"
    mfa_enabled: bool = False
    mfa_method: str = "email"
    ip_whitelist_enabled: bool = False
    ip_whitelist: Optional[str] = None
    audit_log_retention_days: _Digits = "365"

    @property
    def max_attempts(self) -> int:
        return max(int(self.max_login_attempts), 1)

    @property
    def lockout_minutes(self) -> int:
        return int(self.lockout_duration_minutes)


class NotificationSettings(SettingsSection):
    section: ClassVar[str] = "notifications"

    email_notifications_enabled: bool = False
    smtp_host: str = ""
    smtp_port: _Digits = "587"
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = ""
    smtp_from_name: str = ""
    smtp_secure: bool = True
    notify_on_user_created: bool = True
    notify_on_user_deleted: bool = True
    notify_on_role_change: bool = True
    notify_on_password_change: bool = True
    notify_on_login_failure: bool = False
    admin_email_recipients: str = ""
    in_app_notifications_enabled: bool = True
    push_notifications_enabled: bool = False

    def masked(self) -> "NotificationSettings":
        """Copy with the SMTP password replaced by SECRET_MASK for display."""
        if not self.smtp_password:
            return self
        return self.model_copy(update={"smtp_password": SECRET_MASK})


class SystemConfig(SettingsSection):
    section: ClassVar[str] = "system"

    application_name: str = "PCVisor"
    timezone: str = "Asia/Kolkata"
    date_format: str = "DD/MM/YYYY"
    time_format: str = "HH:mm:ss"
    language: str = "en"
    maintenance_mode: bool = False
    max_file_upload_size: _Digits = "10"
    allowed_file_types: str = "pdf,doc,docx,xls,xlsx,png,jpg,jpeg"
    data_retention_days: _Digits = "365"
    enable_api_access: bool = True
    api_rate_limit: _Digits = "1000"
    enable_webhooks: bool = False


class DatabaseSettings(SettingsSection):
    section: ClassVar[str] = "database"

    timezone: str = "UTC"
    backup_retention_days: _Digits = "30"
    max_query_execution_time: _Digits = "30"


def partial_model(model_cls: type[SettingsSection]) -> type[CamelModel]:
    """Build a PATCH body model: every field of model_cls, all optional.

    Routes call .model_dump(exclude_unset=True) on the result so only the
    keys the client actually sent are merged into the stored document.
    """
    fields = {
        name: (Optional[field.annotation], None)
        for name, field in model_cls.model_fields.items()
    }
    return create_model(f"{model_cls.__name__}Patch", __base__=CamelModel, **fields)


OrganizationSettingsPatch = partial_model(OrganizationSettings)
SecuritySettingsPatch = partial_model(SecuritySettings)
NotificationSettingsPatch = partial_model(NotificationSettings)
SystemConfigPatch = partial_model(SystemConfig)
DatabaseSettingsPatch = partial_model(DatabaseSettings)
