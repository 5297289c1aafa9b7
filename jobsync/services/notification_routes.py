from typing import Optional

from jobsync.schemas.actor import ActorRole
from jobsync.schemas.notification import Notification, NotificationType


def resolve_route(notification: Notification, role: ActorRole) -> Optional[str]:
    """Where a click on the notification should take the viewer, if anywhere."""
    job_id = notification.data.get("job_id")
    if notification.type is NotificationType.MESSAGE and notification.related_id:
        return "/employer/messages" if role is ActorRole.EMPLOYER else "/worker/messages"
    if notification.type is NotificationType.APPLICATION and job_id:
        if role is ActorRole.EMPLOYER:
            return f"/employer/jobs/{job_id}/applications"
        return "/worker/applications"
    if notification.type is NotificationType.JOB_MATCH and job_id:
        return f"/jobs/{job_id}"
    return None
