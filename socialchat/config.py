import os

# ================== DEFAULTS ==================

DATA_DIR = os.environ.get("DATA_DIR", "data")


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")  # change for production

    DATA_DIR = DATA_DIR
    # "json" (one file per collection) or "sqlite" (document table)
    STORE_BACKEND = os.environ.get("STORE_BACKEND", "json")
    DB_FILE = os.environ.get("DB_FILE", os.path.join(DATA_DIR, "chat.db"))

    MIN_PASSWORD_LENGTH = int(os.environ.get("MIN_PASSWORD_LENGTH", 8))
    MAX_MESSAGE_LENGTH = int(os.environ.get("MAX_MESSAGE_LENGTH", 2000))

    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")
    ASYNC_MODE = os.environ.get("ASYNC_MODE", "eventlet")

    HOST = os.environ.get("HOST", "0.0.0.0")
    PORT = int(os.environ.get("PORT", 5000))
    DEBUG = os.environ.get("DEBUG", "false").lower() == "true"

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    ASYNC_MODE = "threading"
    MIN_PASSWORD_LENGTH = 8
    LOG_LEVEL = "WARNING"
