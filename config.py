from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Underwriting Decisions API"
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool = False

    database_url: str = "sqlite+aiosqlite:///./underwriting_decisions.db"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Role scoping for the decision routes; disabled locally so every caller acts as admin
    auth_enabled: bool = False
    decision_roles: str = "admin,underwriting"

    # Where the lifecycle controller reaches the decision store
    decision_store_url: str = "http://localhost:3005"
    decision_store_timeout_seconds: float = 10.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def allowed_decision_roles(self) -> set[str]:
        return {r.strip().lower() for r in self.decision_roles.split(",") if r.strip()}


settings = Settings()
