"""Services for Parley Chat API."""
from .model_client import ModelClient, ModelError, ModelClientError
from .retry_policy import RetryPolicy, RetryDecision, Verdict, FatalCause
from .generation_service import GenerationService, GenerationResult
from .conversation_service import ConversationService, ChatReply, Page

__all__ = [
    'ModelClient', 'ModelError', 'ModelClientError',
    'RetryPolicy', 'RetryDecision', 'Verdict', 'FatalCause',
    'GenerationService', 'GenerationResult',
    'ConversationService', 'ChatReply', 'Page',
]
