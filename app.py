# Thin entrypoint exposing the Flask `server`
from dataprovider import config, create_app

server = create_app()


if __name__ == "__main__":  # pragma: no cover
    # For production: gunicorn app:server -c gunicorn.conf.py
    settings = config.get_settings()
    server.run(host="0.0.0.0", port=settings.port, debug=settings.debug)
