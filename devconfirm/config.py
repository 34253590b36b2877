"""DevConfirm Server Configuration."""

import secrets
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Server
    server_name: str = "DevConfirm Server"
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:3001"]

    # Paths
    data_dir: Path = Path.home() / "devconfirm" / "data"

    # Storage
    store_backend: str = "memory"  # 'memory' | 'sqlite'
    db_path: Path = Path.home() / "devconfirm" / "data" / "devconfirm.db"

    # JWT (identity provider tokens)
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 1440  # 24 hours

    # Broker
    transport: str = "mqtt"  # 'mqtt' | 'loopback'
    mqtt_broker: str = "mqtt://localhost:1883"
    mqtt_username: str = ""
    mqtt_password: str = ""
    mqtt_client_id: str = ""
    mqtt_qos: int = 1
    mqtt_keepalive: int = 60
    mqtt_tls_insecure: bool = False
    mqtt_publish_timeout_seconds: float = 5.0
    mqtt_reconnect_min_delay: int = 1
    mqtt_reconnect_max_delay: int = 30

    # Confirmations
    confirmation_timeout_seconds: float = 300.0  # 5 minutes
    confirmation_retention_seconds: int = 86400

    # Push channel
    ws_require_token: bool = False

    model_config = {"env_prefix": "DEVCONFIRM_"}

    def ensure_dirs(self) -> None:
        """Create all required directories."""
        for d in [self.data_dir, self.db_path.parent]:
            d.mkdir(parents=True, exist_ok=True)

    def ensure_secrets(self) -> None:
        """Generate secrets if not set, persist to file so they survive restarts."""
        secrets_file = self.data_dir / ".secrets"
        saved = {}
        if secrets_file.exists():
            for line in secrets_file.read_text().strip().splitlines():
                if "=" in line:
                    k, v = line.split("=", 1)
                    saved[k.strip()] = v.strip()

        if not self.jwt_secret:
            self.jwt_secret = saved.get("jwt_secret", "") or secrets.token_urlsafe(32)
        if not self.mqtt_client_id:
            self.mqtt_client_id = saved.get("mqtt_client_id", "") or f"devconfirm_{secrets.token_hex(4)}"

        # Persist for next restart
        secrets_file.write_text(
            f"jwt_secret={self.jwt_secret}\nmqtt_client_id={self.mqtt_client_id}\n"
        )


settings = Settings()
settings.ensure_dirs()
settings.ensure_secrets()
