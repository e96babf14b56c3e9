# Overview: Celery wiring for background work; tasks run inside a Flask app context.

from __future__ import annotations

from celery import Celery, Task
from flask import Flask


def init_celery(app: Flask) -> Celery:
    """
    Create the Celery app bound to this Flask app.

    Settings come from app.config["CELERY"] (broker_url, result_backend,
    task_always_eager, ...). Every task body runs inside app.app_context(),
    so services see db.session and current_app exactly as in a request.
    """
    class FlaskTask(Task):
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return self.run(*args, **kwargs)

    celery_app = Celery(app.import_name, task_cls=FlaskTask)
    # read config from Flask settings
    celery_app.config_from_object(app.config["CELERY"])
    celery_app.set_default()
    app.extensions["celery"] = celery_app
    return celery_app
