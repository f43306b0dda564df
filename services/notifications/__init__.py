from .broadcaster import ConnectionSession, NotificationBroadcaster

__all__ = ["ConnectionSession", "NotificationBroadcaster"]
