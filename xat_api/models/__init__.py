from .base import Base
from .chat import Conversation, Prompt
from .sentiment import SentimentAnalysis

__all__ = ["Base", "Conversation", "Prompt", "SentimentAnalysis"]
