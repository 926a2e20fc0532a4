from fastapi import BackgroundTasks, Depends, Request

from shared.config.database import AsyncSessionLocal

from .dispatcher import SideEffects
from .sinks import EmailSink, NotificationSink


def get_notification_sink() -> NotificationSink:
    return NotificationSink(AsyncSessionLocal)


def get_email_sink(request: Request) -> EmailSink:
    return request.app.state.email_sink


def get_side_effects(
    background_tasks: BackgroundTasks,
    notifications: NotificationSink = Depends(get_notification_sink),
    email: EmailSink = Depends(get_email_sink),
) -> SideEffects:
    return SideEffects(background_tasks.add_task, notifications, email)
