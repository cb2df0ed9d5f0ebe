from .langchain_transport import LangChainChatTransport
from .schema_registry import SchemaRegistry

__all__ = ["LangChainChatTransport", "SchemaRegistry"]
