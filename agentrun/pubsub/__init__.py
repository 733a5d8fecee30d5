from agentrun.pubsub.base import PubSub, Subscription, agent_topic, approval_response_topic, approval_topic
from agentrun.pubsub.memory import InMemoryPubSub, QueueSubscription

__all__ = [
  "InMemoryPubSub",
  "PubSub",
  "QueueSubscription",
  "Subscription",
  "agent_topic",
  "approval_response_topic",
  "approval_topic",
]
