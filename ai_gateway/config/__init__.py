from ai_gateway.config.loader import load_settings
from ai_gateway.config.settings import GatewaySettings

__all__ = ["GatewaySettings", "load_settings"]
