import os


def _ms(cfg: dict, key: str, env: str, default: str) -> float:
    """Read a millisecond setting and return it in seconds."""
    return int(cfg.get(key, os.getenv(env, default))) / 1000


class Relay:
    def __init__(self, config: dict | None = None) -> None:
        relay_cfg = (config or {}).get("agentrelay", {}).get("relay", {})
        self.CLEANUP_INTERVAL: float = _ms(relay_cfg, "cleanup_interval_ms", "CLEANUP_INTERVAL_MS", "600000")
        self.CONNECTION_TIMEOUT: float = _ms(relay_cfg, "connection_timeout_ms", "CONNECTION_TIMEOUT_MS", "7200000")
        self.MESSAGE_TIMEOUT: float = _ms(relay_cfg, "message_timeout_ms", "MESSAGE_TIMEOUT_MS", "30000")
        self.TOKEN_MAX_AGE: float = _ms(relay_cfg, "token_max_age_ms", "TOKEN_MAX_AGE_MS", "86400000")
        self.CONSENT_MAX_DEPTH: int = int(relay_cfg.get("consent_max_depth", os.getenv("CONSENT_MAX_DEPTH", "3")))
