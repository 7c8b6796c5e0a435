from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

DEFAULT_SUBJECTS = [
	"Mathematics",
	"Science",
	"English",
	"History",
	"Geography",
	"Welsh",
	"Languages",
	"Religious Education",
]


class Settings(BaseSettings):
	# Hosted backend (auth + database REST interface)
	supabase_url: str | None = Field(default=None, validation_alias="SUPABASE_URL")
	supabase_anon_key: str | None = Field(default=None, validation_alias="SUPABASE_ANON_KEY")
	# Tokens are issued by the backend auth service; we only verify them
	supabase_jwt_secret: str = Field(default="change-me", validation_alias="SUPABASE_JWT_SECRET")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	jwt_audience: str = Field(default="authenticated", validation_alias="JWT_AUDIENCE")

	# Local database, used when no hosted backend is configured
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")
	# "auto" picks supabase when SUPABASE_URL is set, sql otherwise
	store: str = Field(default="auto", validation_alias="ATHRO_STORE")

	# Calendar behaviour
	timezone: str = Field(default="Europe/London", validation_alias="ATHRO_TIMEZONE")
	grid_start_hour: int = Field(default=15, validation_alias="ATHRO_GRID_START_HOUR")
	grid_end_hour: int = Field(default=22, validation_alias="ATHRO_GRID_END_HOUR")
	grid_interval_minutes: int = Field(default=20, validation_alias="ATHRO_GRID_INTERVAL_MINUTES")
	slot_break_minutes: int = Field(default=10, validation_alias="ATHRO_SLOT_BREAK_MINUTES")
	max_daily_study_minutes: int = Field(default=360, validation_alias="ATHRO_MAX_DAILY_STUDY_MINUTES")
	request_timeout_seconds: float = Field(default=15.0, validation_alias="ATHRO_REQUEST_TIMEOUT_SECONDS")
	subjects: list[str] = Field(default_factory=lambda: list(DEFAULT_SUBJECTS), validation_alias="ATHRO_SUBJECTS")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def store_backend(self) -> str:
		if self.store in ("supabase", "sql"):
			return self.store
		return "supabase" if self.supabase_url else "sql"

settings = Settings()
