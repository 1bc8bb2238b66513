"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import List, Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class RoomDefaults(BaseModel):
    """Defaults and limits applied when creating rooms."""
    max_members: int = 10
    min_members: int = 2
    max_members_limit: int = 20
    start_hour: int = 9
    end_hour: int = 18

    @field_validator("min_members")
    @classmethod
    def validate_min_members(cls, value: int) -> int:
        """Ensure at least one member seat is allowed."""
        if value < 1:
            raise ValueError("min_members must be at least 1")
        return value

    @field_validator("start_hour")
    @classmethod
    def validate_start_hour(cls, v: int) -> int:
        """Validate hour is between 0 and 23."""
        if not 0 <= v <= 23:
            raise ValueError(f"start_hour must be between 0 and 23, got {v}")
        return v

    @field_validator("end_hour")
    @classmethod
    def validate_end_hour(cls, v: int) -> int:
        """Validate hour is between 1 and 24."""
        if not 1 <= v <= 24:
            raise ValueError(f"end_hour must be between 1 and 24, got {v}")
        return v

    @model_validator(mode="after")
    def validate_ranges(self) -> "RoomDefaults":
        """Ensure the member limits and working window are consistent."""
        if self.max_members_limit < self.min_members:
            raise ValueError("max_members_limit must not be below min_members")
        if not self.min_members <= self.max_members <= self.max_members_limit:
            raise ValueError(
                f"max_members must be between {self.min_members} and {self.max_members_limit}, "
                f"got {self.max_members}"
            )
        if self.end_hour <= self.start_hour:
            raise ValueError("end_hour must be later than start_hour")
        return self


class ExchangeConfig(BaseModel):
    """Smart exchange behaviour."""
    slot_minutes: int = 30
    auto_place_when_occupied: bool = False

    @field_validator("slot_minutes")
    @classmethod
    def validate_slot_minutes(cls, value: int) -> int:
        """Ensure slot granularity is positive and divides an hour."""
        if value <= 0 or 60 % value != 0:
            raise ValueError(f"slot_minutes must be a positive divisor of 60, got {value}")
        return value


class StorageConfig(BaseModel):
    """Where the CLI keeps room documents and reads preferences."""
    data_dir: Path = Path(".roomgrid")
    preferences_file: Path = Path("preferences.yaml")


class User(BaseModel):
    """A known user in the local directory."""
    id: str
    name: str
    email: str = ""

    def display_name(self) -> str:
        """Get display name."""
        return self.name


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "UTC"
    log_level: str = "WARNING"
    defaults: RoomDefaults = Field(default_factory=RoomDefaults)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    max_write_retries: int = 3
    users: List[User] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            pendulum.timezone(value)
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("max_write_retries")
    @classmethod
    def validate_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_write_retries must be at least 1")
        return value

    @field_validator("users")
    @classmethod
    def validate_users(cls, value: List[User]) -> List[User]:
        """Ensure user ids and emails are unique."""
        seen_ids: set[str] = set()
        seen_emails: set[str] = set()
        for user in value:
            email_key = user.email.lower()
            if user.id in seen_ids:
                raise ValueError(f"Duplicate user id detected: {user.id}")
            if email_key and email_key in seen_emails:
                raise ValueError(f"Duplicate user email detected: {user.email}")
            seen_ids.add(user.id)
            if email_key:
                seen_emails.add(email_key)
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a roomgrid.yaml file. See roomgrid.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)

    def find_user(self, identifier: str) -> Optional[User]:
        """Find a user by id, name or email (case-insensitive for name and email)."""
        for user in self.users:
            if user.id == identifier:
                return user
        lowered = identifier.lower()
        for user in self.users:
            if user.name.lower() == lowered or (user.email and user.email.lower() == lowered):
                return user
        return None

    def display_name(self, user_id: str) -> str:
        """Name shown for a user id; unknown ids are shown as-is."""
        user = self.find_user(user_id)
        return user.display_name() if user else user_id


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for roomgrid.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "roomgrid.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "roomgrid.yaml"

    return config_path
