from celery import Celery

# Create Celery app
celery = Celery("pick_alerts")

# Load configuration from pick_alerts.config.celeryconfig module
celery.config_from_object("pick_alerts.config.celeryconfig")
