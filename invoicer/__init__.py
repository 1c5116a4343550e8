from flask import Flask
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from .config import Config

db = SQLAlchemy()
migrate = Migrate()
cors = CORS()


def create_app(overrides=None, **collaborators):
    """Build the Flask app.

    ``overrides`` is merged into the config after the environment is read.
    Keyword arguments (``gateway``, ``ocr_client``, ``extractor``,
    ``exporter``, ``redis_conn``) replace the collaborators built from config.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    from .logs import configure_logging
    configure_logging(app.config["LOG_LEVEL"])

    db.init_app(app)
    migrate.init_app(app, db)
    cors.init_app(app, resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}}, supports_credentials=True)

    # Import models so Alembic can see them
    from . import models  # noqa: F401
    from .context import Collaborators
    app.extensions["invoicer"] = Collaborators.from_config(app.config, **collaborators)

    from .api.routes import api_bp
    app.register_blueprint(api_bp, url_prefix="/api")

    # Create DB tables on first run (SQLite dev convenience)
    with app.app_context():
        db.create_all()

    return app
