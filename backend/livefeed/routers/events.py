import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Body
from fastapi.responses import StreamingResponse

from ..core.errors import InvalidTopic, PredicateFailure
from ..core.filtering import with_filter
from ..core.pubsub import PubSub, validate_topic
from ..schemas.event import BrokerStats, PublishRequest, PublishResult, TopicStats
from ..security.api_key import get_api_key
from ..services.matching import InvalidMatch, parse_match, payload_matches

router = APIRouter()


def get_pubsub(request: Request) -> PubSub:
    return request.app.state.pubsub


def _checked_topic(topic: str) -> str:
    try:
        return validate_topic(topic)
    except InvalidTopic as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("", response_model=BrokerStats)
def stats(pubsub: PubSub = Depends(get_pubsub)):
    topics = [TopicStats(topic=t, listeners=pubsub.listener_count(t)) for t in sorted(pubsub.topics())]
    return BrokerStats(topics=topics, listeners=len(pubsub))


@router.post("/{topic}", response_model=PublishResult, dependencies=[Depends(get_api_key)])
async def publish(topic: str, body: PublishRequest = Body(...), pubsub: PubSub = Depends(get_pubsub)):
    topic = _checked_topic(topic)
    delivered = pubsub.publish(topic, body.payload)
    logging.getLogger(__name__).info("published", extra={"topic": topic, "delivered": delivered})
    return PublishResult(topic=topic, delivered=delivered)


@router.get("/{topic}/stream")
async def stream(
    topic: str,
    request: Request,
    match: Optional[List[str]] = Query(None, description="field=value filters, dotted paths allowed"),
    pubsub: PubSub = Depends(get_pubsub),
):  # pragma: no cover (long-lived response, exercised through the core tests)
    topic = _checked_topic(topic)
    try:
        criteria = parse_match(match)
    except InvalidMatch as e:
        raise HTTPException(status_code=400, detail=str(e))
    handler = with_filter(lambda: pubsub.as_async_iterator(topic), payload_matches)
    feed = handler(None, {"match": criteria}, {"trace_id": request.headers.get("X-Trace-Id")}, {"topic": topic})
    log = logging.getLogger(__name__)

    async def event_stream():
        try:
            while True:
                try:
                    payload = await feed.__anext__()
                except StopAsyncIteration:
                    break
                except PredicateFailure:
                    # only this payload is lost; keep streaming
                    continue
                # client disconnect handling
                if await request.is_disconnected():
                    break
                yield f"event: {topic}\ndata: {json.dumps(payload, default=str)}\n\n"
        finally:
            await feed.aclose()
            log.info("stream_closed", extra={"topic": topic})

    return StreamingResponse(event_stream(), media_type='text/event-stream')
