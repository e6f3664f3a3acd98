from pydantic import BaseModel
from typing import Any, List

class PublishRequest(BaseModel):
    payload: Any = None

class PublishResult(BaseModel):
    topic: str
    delivered: int

class TopicStats(BaseModel):
    topic: str
    listeners: int

class BrokerStats(BaseModel):
    topics: List[TopicStats] = []
    listeners: int = 0
