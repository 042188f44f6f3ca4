"""
Application Configuration
Add constants, secrets, env variables here
"""

from functools import lru_cache
import os
import json
from pathlib import Path
from pydantic import computed_field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv

# Load .env file into os.environ so os.getenv() works correctly
# This must happen before Settings class is instantiated
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

TRUTHY_VALUES = ("1", "true", "yes", "on")


def get_secret(secret_name: str, region_name: str) -> dict:
    """
    Retrieve secrets from AWS Secrets Manager

    Args:
        secret_name: Name of the secret in Secrets Manager
        region_name: AWS region where secret is stored

    Returns:
        dict: Parsed secret value

    Raises:
        ClientError: If secret cannot be retrieved
    """
    session = boto3.session.Session()
    client = session.client(
        service_name='secretsmanager',
        region_name=region_name
    )
    try:
        get_secret_value_response = client.get_secret_value(
            SecretId=secret_name
        )
    except ClientError:
        raise
    secret = get_secret_value_response['SecretString']
    return json.loads(
        secret.replace('\n', '')
    )


def parse_bool(value) -> bool:
    """Interpret an env/secret string as a boolean flag"""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY_VALUES


# Define settings class for univeral access
class Settings(BaseSettings):
    # Computed or constant values
    client_origin: str | None = os.getenv("client_origin")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Cache for AWS Secrets Manager to avoid multiple API calls
    # Note: Must use PrivateAttr for Pydantic v2 private attributes
    _secret_cache: dict | None = PrivateAttr(default=None)

    def _get_config_value(
        self,
        env_var_name: str,
        secret_key_name: str | None = None,
        default: str | None = None,
        use_cache: bool = True
    ) -> str | None:
        """
        Get configuration value from environment variable or AWS Secrets Manager (with caching).

        Args:
            env_var_name: Environment variable name to check first
            secret_key_name: Key name in AWS Secrets (defaults to env_var_name if not provided)
            default: Default value to return if not found in env or secrets
            use_cache: Reuse the secret payload fetched by an earlier call

        Returns:
            Configuration value, or default value if not found
        """
        # 1. Check environment variable first
        env_value = os.getenv(env_var_name)
        if env_value:
            return env_value

        # 2. Try to get from AWS Secrets Manager with caching
        if secret_key_name is None:
            secret_key_name = env_var_name

        env_secret = os.getenv('ENV_SECRETS')
        if env_secret:
            try:
                region = os.getenv("AWS_REGION", 'us-east-1')
                if use_cache:
                    if self._secret_cache is None:
                        self._secret_cache = get_secret(env_secret, region)
                    secrets = self._secret_cache
                else:
                    secrets = get_secret(env_secret, region)

                secret_value = secrets.get(secret_key_name)
                if secret_value is not None:
                    return secret_value
            except (BotoCoreError, ClientError):
                pass

        # 3. Return default value if provided
        return default

    # SQLAlchemy - Create db connection string
    @computed_field
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """Build database URI from env or secrets, defaults to sqlite://"""
        return self._get_config_value("SQLALCHEMY_DATABASE_URI", default="sqlite://")

    # Deduplication
    @computed_field
    @property
    def DISABLE_REMOVE_GLOBAL_FILE(self) -> bool:
        """
        Keep global files after their last file record is deleted.
        Looked up on every access, secrets included, so operators can flip it
        without a restart.
        """
        return parse_bool(
            self._get_config_value(
                "DISABLE_REMOVE_GLOBAL_FILE", default="false", use_cache=False
            )
        )

    # AWS Credentials
    AWS_REGION: str | None = os.getenv("AWS_REGION")

    # Read environment variables from .env file, if it exists
    # extra='ignore' prevents validation errors from extra env vars
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Export settings
@lru_cache
def get_settings() -> Settings:
    """
    Get settings instance, cached for performance
    """
    return Settings()


def is_global_file_removal_disabled() -> bool:
    """Current value of DISABLE_REMOVE_GLOBAL_FILE (never memoized)"""
    return get_settings().DISABLE_REMOVE_GLOBAL_FILE


if __name__ == "__main__":
    print(get_settings().SQLALCHEMY_DATABASE_URI)
