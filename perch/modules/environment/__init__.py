from .config import EnvConfig
from .models import EnvStats
from .env import EnvObjectRecognition

__all__ = ["EnvConfig", "EnvStats", "EnvObjectRecognition"]
