from celery import Celery

from learnlynk.core.config import get_settings

settings = get_settings()

celery_app = Celery("learnlynk_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.task_ignore_result = True
celery_app.conf.imports = ("learnlynk.notifications",)

