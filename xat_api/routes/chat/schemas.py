from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PromptRequest(CamelModel):
    """Request model for registering a prompt"""
    conversation_id: Optional[str] = Field(None, description="Optional conversation ID (UUID) to continue or create")
    prompt: Optional[str] = Field(None, description="Prompt text, required and non-empty")
    model: Optional[str] = Field(None, description="Model to use, defaults to the configured model")
    stream: bool = Field(False, description="Whether the response is streamed as server-sent events")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "conversationId": "a542db3f-0e80-4d34-8574-982966e038c6",
                "prompt": "Name a good song released in the last ten years by a little-known artist",
                "model": "qwen2.5vl:7b",
                "stream": False,
            }
        },
    )


class PromptResponse(CamelModel):
    """Response model for a non-streaming prompt"""
    conversation_id: str = Field(..., description="Conversation the prompt belongs to")
    prompt_id: str = Field(..., description="Identifier of the stored prompt")
    prompt: str = Field(..., description="The prompt text as stored")
    response: str = Field(..., description="The model's response")
    message: str = Field(..., description="Human readable status message")


class PromptItem(CamelModel):
    """One prompt/response exchange within a conversation"""
    id: str
    prompt: str
    response: str
    model: Optional[str] = None
    stream: Optional[bool] = None
    created_at: Optional[datetime] = None


class ConversationResponse(CamelModel):
    """Response model for conversation retrieval"""
    id: str = Field(..., description="Unique identifier for the conversation")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    prompts: List[PromptItem] = Field(..., description="Prompts ordered by creation time")


class ModelInfo(BaseModel):
    name: str
    modified_at: Optional[str] = None
    size: Optional[int] = None
    digest: Optional[str] = None


class ModelsResponse(CamelModel):
    """Response model for the model listing"""
    total_models: int
    models: List[ModelInfo]


class SentimentRequest(BaseModel):
    """Request model for sentiment analysis"""
    text: Optional[str] = Field(None, description="The text to analyze")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "text": "This product is absolutely amazing! I'm very happy with my purchase."
            }
        }
    )


class SentimentResponse(CamelModel):
    """Response model for sentiment analysis"""
    id: str
    text: str
    score: float = Field(..., ge=0, le=10, description="0 = very negative, 10 = very positive")
    sentiment: str
    model: str
    created_at: Optional[datetime] = None


class ErrorResponse(BaseModel):
    """Error response model"""
    detail: str = Field(..., description="Error message")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"detail": "Conversation not found"}
        }
    )
