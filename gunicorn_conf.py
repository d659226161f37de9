# Gunicorn config: gunicorn -c gunicorn_conf.py "app:create_app()"
import os

bind = os.environ.get('HTTP_ADDR', '0.0.0.0:8000')
workers = int(os.environ.get('WEB_CONCURRENCY', '4'))
# build the offset cache once in the master; workers inherit it on fork
preload_app = True


def post_fork(server, worker):
    try:
        # import here so module state is the same as gunicorn-loaded app
        import app
        app.init_worker()
        server.log.info(f"post_fork: initialized worker pid={worker.pid}")
    except Exception as e:
        server.log.error(f"post_fork: failed to init worker: {e}")
