import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from flask_sqlalchemy import SQLAlchemy


# Initialize extensions
db = SQLAlchemy()


def configure_logging(app):
    """Configure application logging"""

    # Create logs directory if it doesn't exist
    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'dbkeeper.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Handlers live on the root logger only; the Flask app logger and the
    # module loggers under app.* propagate to it
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])
    app.logger.setLevel(log_level)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, config_overrides=None):
    """
    Flask application factory

    Args:
        config_name: Key of app.config.config ('development', 'production', 'testing')
        config_overrides: Optional dict applied on top of the config class
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from app.config import config
    app.config.from_object(config[config_name])
    # Read at app creation, gunicorn sets it per worker after fork
    app.config['WORKER_ROLE'] = os.environ.get('WORKER_ROLE', app.config['WORKER_ROLE'])
    if config_overrides:
        app.config.update(config_overrides)

    # Configure logging
    configure_logging(app)

    # Ensure required directories exist
    os.makedirs(app.config['BACKUP_DIR'], exist_ok=True)
    db_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if db_uri.startswith('sqlite:///') and db_uri != 'sqlite:///:memory:':
        os.makedirs(os.path.dirname(db_uri.replace('sqlite:///', '')), exist_ok=True)

    # Initialize extensions
    db.init_app(app)

    # Register blueprints
    from app.routes import jobs_routes, settings_routes
    app.register_blueprint(settings_routes.bp)
    app.register_blueprint(jobs_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Initialize database schema and default backup settings
    from app import models
    from app.migrations import init_database_schema
    init_database_schema(app)

    # Elect the backup owner and register the backup job
    from app.scheduler import bootstrap_backup_scheduler

    # Development mode: only in the Flask reloader child process (the parent
    # would otherwise take the backup lock and keep it from the child)
    is_reloader_parent = (
        app.config.get('DEBUG', False)
        and os.environ.get('WERKZEUG_RUN_MAIN') != 'true'
    )

    if is_reloader_parent:
        app.logger.info("Backup scheduler skipped in reloader parent process")
    else:
        backup_scheduler = bootstrap_backup_scheduler(app)
        app.logger.info(
            f"Worker role '{app.config['WORKER_ROLE']}': "
            f"backup duty {'held' if backup_scheduler.holds_duty else 'not held'}"
        )

    return app
