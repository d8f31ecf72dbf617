# coffee_backoffice/celery.py
import os
from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'coffee_backoffice.settings')

app = Celery('coffee_backoffice')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
