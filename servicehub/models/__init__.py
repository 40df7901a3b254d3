from servicehub.models.bookings import (  # noqa: F401
    ApprovalStatus,
    Booking,
    BookingStatus,
    Milestone,
    MilestoneApproval,
    MilestoneStatus,
    Task,
    TaskStatus,
    TimeEntry,
)
from servicehub.models.notification import (  # noqa: F401
    EmailDeliveryStatus,
    EmailNotificationLog,
    EmailPreference,
    EmailTemplateStyle,
    Notification,
    NotificationPriority,
    NotificationSettings,
    NotificationType,
)
from servicehub.models.profile import Profile  # noqa: F401
