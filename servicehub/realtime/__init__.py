from servicehub.realtime.events import ProgressAction, ProgressEvent, ProgressEventType  # noqa: F401
from servicehub.realtime.hub import RealtimeHub  # noqa: F401
