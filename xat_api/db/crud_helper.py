from xat_api.db import CRUDCapability, Database
from xat_api.models.chat import Conversation, Prompt
from xat_api.models.sentiment import SentimentAnalysis


class ConversationCRUD(CRUDCapability[Conversation]):
    resource_db = Conversation


class PromptCRUD(CRUDCapability[Prompt]):
    resource_db = Prompt


class SentimentAnalysisCRUD(CRUDCapability[SentimentAnalysis]):
    resource_db = SentimentAnalysis


class ConversationStore:
    """The three CRUD helpers sharing one database."""

    def __init__(self, database: Database) -> None:
        self.database = database
        self.conversations = ConversationCRUD(Conversation, database)
        self.prompts = PromptCRUD(Prompt, database)
        self.sentiments = SentimentAnalysisCRUD(SentimentAnalysis, database)
