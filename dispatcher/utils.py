import logging


def logger():
    return logging.getLogger('gunicorn.error')
