"""Application configuration"""

import logging
import os

from dotenv import load_dotenv

from .loader import load_raw_config
from .core import Core
from .copilot import Copilot
from .relay import Relay

load_dotenv()

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s]: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(
    format=LOG_FORMAT,
    datefmt=DATE_FORMAT,
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
)
logging.getLogger("discord").setLevel(logging.WARNING)
logging.getLogger("aiohttp").setLevel(logging.WARNING)

_RAW_CONFIG = load_raw_config()

core = Core(_RAW_CONFIG)
copilot = Copilot(_RAW_CONFIG)
relay = Relay(_RAW_CONFIG)


class Config:
    core = core
    copilot = copilot
    relay = relay


__all__ = ["core", "copilot", "relay", "Config"]
