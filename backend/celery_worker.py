#!/usr/bin/env python3
"""
Celery worker startup script for the Exam Proctor API

    celery -A celery_worker worker --beat --loglevel=info
"""

from examproctor.core.celery_app import celery_app

if __name__ == '__main__':
    celery_app.start()
