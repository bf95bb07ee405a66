from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="deepseek/deepseek-chat", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="TOEFL Writing Practice", validation_alias="OPENROUTER_TITLE")

	# Upper bound for one whole grading call, fallback included
	grading_timeout_seconds: float = Field(default=90.0, validation_alias="GRADING_TIMEOUT_SECONDS")

	# Narration (Cloudflare Workers AI text-to-speech)
	cloudflare_account_id: str | None = Field(default=None, validation_alias="CLOUDFLARE_ACCOUNT_ID")
	cloudflare_api_token: str | None = Field(default=None, validation_alias="CLOUDFLARE_API_TOKEN")
	narration_model: str = Field(default="@cf/deepgram/aura-1", validation_alias="NARRATION_MODEL")
	narration_timeout_seconds: float = Field(default=60.0, validation_alias="NARRATION_TIMEOUT_SECONDS")
	narration_max_attempts: int = Field(default=3, validation_alias="NARRATION_MAX_ATTEMPTS")
	narration_retry_delay_seconds: float = Field(default=3.0, validation_alias="NARRATION_RETRY_DELAY_SECONDS")

	# Media storage: Cloudinary when configured, local directory otherwise
	cloudinary_cloud_name: str | None = Field(default=None, validation_alias="CLOUDINARY_CLOUD_NAME")
	cloudinary_api_key: str | None = Field(default=None, validation_alias="CLOUDINARY_API_KEY")
	cloudinary_api_secret: str | None = Field(default=None, validation_alias="CLOUDINARY_API_SECRET")
	cloudinary_folder: str = Field(default="toefl_lectures", validation_alias="CLOUDINARY_FOLDER")
	upload_timeout_seconds: float = Field(default=60.0, validation_alias="UPLOAD_TIMEOUT_SECONDS")
	media_root: str = Field(default="./media", validation_alias="MEDIA_ROOT")
	media_base_url: str = Field(default="/media", validation_alias="MEDIA_BASE_URL")

	# Auth configuration (tokens are verified here, issued elsewhere)
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
	# Re-dispatch submissions left queued by a previous process
	requeue_on_startup: bool = Field(default=True, validation_alias="REQUEUE_ON_STARTUP")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

	@property
	def narration_configured(self) -> bool:
		return bool(self.cloudflare_account_id and self.cloudflare_api_token)

	@property
	def cloudinary_configured(self) -> bool:
		return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)
