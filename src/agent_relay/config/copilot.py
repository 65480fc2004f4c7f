import os


class Copilot:
    def __init__(self, config: dict | None = None) -> None:
        cfg = (config or {}).get("agentrelay", {})
        copilot_cfg = cfg.get("copilot", {})
        oauth_cfg = cfg.get("oauth", {})

        self.ENVIRONMENT_ID: str | None = copilot_cfg.get("environment_id") or os.getenv("COPILOT_ENVIRONMENT_ID")
        self.AGENT_IDENTIFIER: str | None = copilot_cfg.get("agent_identifier") or os.getenv("COPILOT_AGENT_IDENTIFIER")
        self.APP_CLIENT_ID: str | None = copilot_cfg.get("app_client_id") or os.getenv("COPILOT_APP_CLIENT_ID")
        self.CLIENT_SECRET: str | None = os.getenv(str(copilot_cfg.get("client_secret_env", "COPILOT_CLIENT_SECRET")))
        self.TENANT_ID: str | None = copilot_cfg.get("tenant_id") or os.getenv("COPILOT_TENANT_ID")

        self.OAUTH_SCOPE: str = str(
            oauth_cfg.get("scope", os.getenv("OAUTH_SCOPE", "https://api.powerplatform.com/.default"))
        )
        self.LOGIN_AUTHORITY: str = str(
            oauth_cfg.get("authority", os.getenv("MICROSOFT_LOGIN_AUTHORITY", "https://login.microsoftonline.com"))
        ).rstrip("/")

        required = [
            ("COPILOT_ENVIRONMENT_ID", self.ENVIRONMENT_ID),
            ("COPILOT_AGENT_IDENTIFIER", self.AGENT_IDENTIFIER),
            ("COPILOT_APP_CLIENT_ID", self.APP_CLIENT_ID),
            ("COPILOT_CLIENT_SECRET", self.CLIENT_SECRET),
            ("COPILOT_TENANT_ID", self.TENANT_ID),
        ]
        missing = [name for name, val in required if not val]
        if missing:
            raise ValueError(f"Missing environment variables: {', '.join(missing)}")
