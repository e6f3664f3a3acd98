class LiveFeedError(Exception):
    """Base class for broker and feed errors."""


class InvalidTopic(LiveFeedError, ValueError):
    def __init__(self, topic):
        self.topic = topic
        super().__init__(f"invalid topic: {topic!r}")


class UnknownSubscription(LiveFeedError, KeyError):
    def __init__(self, subscription_id):
        self.subscription_id = subscription_id
        super().__init__(subscription_id)

    def __str__(self) -> str:
        return f"unknown subscription id: {self.subscription_id}"


class PredicateFailure(LiveFeedError):
    """A filter predicate raised instead of answering.

    The original exception is chained as ``__cause__``. Only the pull that
    evaluated the predicate fails; the feed itself stays usable.
    """

    def __init__(self, payload, message: str = "filter predicate raised"):
        self.payload = payload
        super().__init__(message)
