# Overview: Celery worker entry point: celery -A billing.worker worker --loglevel INFO

from billing import create_app

flask_app = create_app()
celery_app = flask_app.extensions["celery"]
