"""
Configuration management for Campus Events Service.
Uses Zero Python SDK for secure configuration, with environment overrides.
"""

import os
import asyncio
import concurrent.futures
from urllib.parse import quote_plus
from typing import Dict, Any, Optional
import logging
from zero_python_sdk import zero

logger = logging.getLogger(__name__)


class SecretsManager:
    """
    Secrets client backed by the process environment and the Zero secrets store.
    Environment variables always win over Zero values.
    """

    def __init__(self, zero_token: Optional[str], caller_name: str = "campus-events"):
        self.zero_token = zero_token
        self.caller_name = caller_name
        self._cache: Dict[str, Any] = {}
        self._secrets = None

    async def _fetch_secrets(self):
        """Fetch secrets from Zero if not already cached."""
        if self._secrets is not None:
            return

        if not self.zero_token:
            self._secrets = {}
            return

        try:
            loop = asyncio.get_running_loop()
            with concurrent.futures.ThreadPoolExecutor() as executor:
                self._secrets = await loop.run_in_executor(
                    executor,
                    lambda: zero(
                        token=self.zero_token,
                        pick=["campus-events"],
                        caller_name=self.caller_name
                    ).fetch()
                )
            logger.info("Successfully fetched secrets from Zero")
        except Exception as e:
            logger.error(f"Failed to fetch secrets from Zero: {e}")
            self._secrets = {}

    def _normalize_key(self, key: str) -> str:
        """Normalize a key to lowercase and replace underscores with hyphens."""
        return key.lower().replace("_", "-")

    async def get_secret(self, key: str) -> Optional[str]:
        """
        Get a secret value by key.

        Args:
            key: The secret key to retrieve (environment style, e.g. DB_HOST)

        Returns:
            Secret value or None if not found
        """
        env_value = os.getenv(key)
        if env_value:
            return env_value

        normalized = self._normalize_key(key)
        if normalized in self._cache:
            return self._cache[normalized]

        await self._fetch_secrets()
        bundle = self._secrets.get("campus-events", {})
        secret_value = bundle.get(normalized)

        if secret_value:
            self._cache[normalized] = secret_value

        return secret_value

    async def close(self):
        """Close method for compatibility."""
        self._cache.clear()


class CampusEventsConfig:
    """
    Campus Events Service configuration manager.
    Every getter is async so values can come from the remote secrets store.
    """

    def __init__(self):
        self.zero_token = os.getenv("ZERO_TOKEN")
        if not self.zero_token:
            logger.warning("ZERO_TOKEN not set, configuration is read from the environment only")

        self.secrets_manager = SecretsManager(self.zero_token)

    async def get_database_url(self) -> str:
        """Get the database connection URL."""
        url = await self.secrets_manager.get_secret("DATABASE_URL")
        if url:
            return url

        host = await self.secrets_manager.get_secret("DB_HOST") or "localhost"
        port = await self.secrets_manager.get_secret("DB_PORT") or "5432"
        name = await self.secrets_manager.get_secret("DB_NAME") or "campus_events"
        user = await self.secrets_manager.get_secret("DB_USER") or "campus_events"
        password = await self.secrets_manager.get_secret("DB_PASSWORD") or "campus_events"

        return f"postgresql://{user}:{quote_plus(password)}@{host}:{port}/{name}"

    async def get_database_config(self) -> Dict[str, Any]:
        """Get connection pool configuration."""
        return {
            "pool_size": int(await self.secrets_manager.get_secret("DB_POOL_SIZE") or "10"),
            "max_overflow": int(await self.secrets_manager.get_secret("DB_MAX_OVERFLOW") or "20"),
            "pool_timeout": int(await self.secrets_manager.get_secret("DB_POOL_TIMEOUT") or "30"),
            "pool_recycle": int(await self.secrets_manager.get_secret("DB_POOL_RECYCLE") or "3600"),
        }

    async def get_redis_url(self) -> str:
        """Get the Redis connection URL."""
        host = await self.secrets_manager.get_secret("REDIS_HOST") or "localhost"
        port = await self.secrets_manager.get_secret("REDIS_PORT") or "6379"
        password = await self.secrets_manager.get_secret("REDIS_PASSWORD")
        use_tls = await self.secrets_manager.get_secret("REDIS_USE_TLS")

        protocol = "rediss://" if use_tls == "true" else "redis://"

        if password:
            return f"{protocol}:{quote_plus(password)}@{host}:{port}"
        return f"{protocol}{host}:{port}"

    async def get_jwt_secret(self) -> str:
        """Get JWT secret key shared with the identity provider."""
        return await self.secrets_manager.get_secret("JWT_SECRET") or "your-secret-key-change-in-production"

    async def get_jwt_algorithm(self) -> str:
        """Get JWT algorithm."""
        return await self.secrets_manager.get_secret("JWT_ALGORITHM") or "HS256"

    async def get_consistency_config(self) -> Dict[str, Any]:
        """Get locking configuration for approval and scan operations."""
        return {
            "lock_timeout_seconds": int(await self.secrets_manager.get_secret("LOCK_TIMEOUT_SECONDS") or "30"),
            "enable_distributed_locks": await self.secrets_manager.get_secret("ENABLE_DISTRIBUTED_LOCKS") == "true",
        }

    async def get_ticket_config(self) -> Dict[str, Any]:
        """Get QR ticket configuration."""
        return {
            "qr_encryption_key": await self.secrets_manager.get_secret("QR_ENCRYPTION_KEY"),
            "qr_box_size": int(await self.secrets_manager.get_secret("QR_BOX_SIZE") or "10"),
            "qr_border": int(await self.secrets_manager.get_secret("QR_BORDER") or "2"),
        }

    async def get_upload_config(self) -> Dict[str, Any]:
        """Get payment proof upload configuration."""
        allowed = await self.secrets_manager.get_secret("ALLOWED_IMAGE_TYPES")
        return {
            "upload_dir": await self.secrets_manager.get_secret("UPLOAD_DIR") or "uploads/payment-proofs",
            "max_upload_size_mb": int(await self.secrets_manager.get_secret("MAX_UPLOAD_SIZE_MB") or "5"),
            "allowed_image_types": allowed.split(",") if allowed else ["image/jpeg", "image/jpg", "image/png"],
        }

    async def get_notification_config(self) -> Dict[str, Any]:
        """Get notification dispatch configuration."""
        return {
            "enable_notifications": await self.secrets_manager.get_secret("ENABLE_NOTIFICATIONS") != "false",
            "frontend_url": await self.secrets_manager.get_secret("FRONTEND_URL") or "http://localhost:3000",
        }

    async def close(self):
        """Close the secrets manager."""
        await self.secrets_manager.close()


# Global config instance
config = CampusEventsConfig()
