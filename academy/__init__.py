from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_migrate import Migrate
from .config import Config
import logging.config

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()

def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Initialize logging
    logging.config.dictConfig(app.config['LOGGING'])

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)

    # Register blueprints
    from .routes.scorm import scorm_bp
    from .routes.courses import courses_bp
    from .routes.lessons import lessons_bp
    from .routes.errors import register_error_handlers

    app.register_blueprint(scorm_bp, url_prefix='/scorm')
    app.register_blueprint(courses_bp, url_prefix='/courses')
    app.register_blueprint(lessons_bp, url_prefix='/lessons')
    register_error_handlers(app)

    # CLI commands
    from .cli import register_commands
    register_commands(app)

    # Create database tables
    with app.app_context():
        from .models import user, course, enrollment, runtime, ledger  # noqa: F401
        db.create_all()

    return app
