import os

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Runtime configuration read from the environment (and an optional .env file)."""

    def __init__(self):
        self.database_url = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
        self.database_name = os.getenv("DATABASE_NAME", "ecommerce")
        self.database_timeout_ms = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

        self.jwt_secret = os.getenv("JWT_SECRET", "dev-secret-change-me")
        self.jwt_algorithm = "HS256"
        self.jwt_expires_min = int(os.getenv("JWT_EXPIRES_MIN", "15"))
        self.refresh_token_days = int(os.getenv("REFRESH_TOKEN_DAYS", "7"))
        self.reset_token_minutes = int(os.getenv("RESET_TOKEN_MINUTES", "15"))
        self.bcrypt_rounds = int(os.getenv("BCRYPT_ROUNDS", "12"))

        self.frontend_url = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

        self.mail_backend = os.getenv("MAIL_BACKEND", "console")
        self.mail_host = os.getenv("MAIL_HOST", "localhost")
        self.mail_port = int(os.getenv("MAIL_PORT", "587"))
        self.mail_user = os.getenv("MAIL_USER")
        self.mail_pass = os.getenv("MAIL_PASS")
        self.mail_from = os.getenv("MAIL_FROM") or self.mail_user or "no-reply@localhost"

        self.cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.port = int(os.getenv("PORT", "8000"))


settings = Settings()
