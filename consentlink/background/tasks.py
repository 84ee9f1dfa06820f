# consentlink/background/tasks.py
from typing import Any, Callable

from fastapi import BackgroundTasks


def enqueue_task(
    background_tasks: BackgroundTasks,
    func: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> None:
    """
    Helper to add a background task in a consistent way.

    Usage in endpoints:
        from fastapi import BackgroundTasks
        from consentlink.background.tasks import enqueue_task
        from consentlink.services.event_hook import publish_sharing_event

        @router.post("/something")
        def handler(..., background_tasks: BackgroundTasks):
            enqueue_task(background_tasks, publish_sharing_event, payload)
    """
    background_tasks.add_task(func, *args, **kwargs)
