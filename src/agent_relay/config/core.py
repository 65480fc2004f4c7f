import logging
import os
from typing import List

logger = logging.getLogger(__name__)


def _split_ids(raw: str) -> List[int]:
    return [int(cid.strip()) for cid in raw.split(",") if cid.strip()]


def _as_bool(raw) -> bool:
    return str(raw).strip().lower() in ("1", "true", "yes")


class Core:
    def __init__(self, config: dict | None = None) -> None:
        cfg = (config or {}).get("agentrelay", {})
        discord_cfg = cfg.get("discord", {})
        server_cfg = cfg.get("server", {})

        token_env = str(discord_cfg.get("token_env", "DISCORD_API_TOKEN"))
        self.DISCORD_API_TOKEN: str | None = os.getenv(token_env)

        channel_ids_cfg = discord_cfg.get("channel_ids")
        if channel_ids_cfg:
            self.CHANNEL_IDS: List[int] = [int(cid) for cid in channel_ids_cfg]
        else:
            self.CHANNEL_IDS = _split_ids(os.getenv("CHANNEL_IDS", ""))

        # Users must sign in before chatting unless explicitly disabled.
        require_raw = discord_cfg.get(
            "require_auth",
            os.getenv("REQUIRE_AUTH", os.getenv("COPILOT_REQUIRE_AUTH", "true")),
        )
        self.REQUIRE_AUTH: bool = _as_bool(require_raw)

        self.HOST: str = str(server_cfg.get("host", os.getenv("HOST", "0.0.0.0")))
        self.PORT: int = int(server_cfg.get("port", os.getenv("PORT", "8005")))
        self.SERVER_BASE_URL: str = str(
            server_cfg.get("base_url", os.getenv("SERVER_BASE_URL", f"http://localhost:{self.PORT}"))
        ).rstrip("/")

        if not self.DISCORD_API_TOKEN:
            logger.warning("DISCORD_API_TOKEN is not set; the Discord bot cannot start.")
