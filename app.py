import atexit
import logging
import os

import click
from flask import Flask, jsonify
from flask_cors import CORS
from sqlalchemy.exc import IntegrityError

import models  # noqa: F401  registers every model with SQLAlchemy
from config import Config
from extensions import db, jwt, mail, task_queue
from routes import pipeline_bp
from services.errors import PipelineError
from services.pipeline_orchestrator import EXECUTE_STEP_TASK
from services.step_executor import execute_step

logger = logging.getLogger(__name__)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )

    CORS(app, origins=app.config.get('CORS_ORIGINS'), supports_credentials=True)

    db.init_app(app)
    jwt.init_app(app)
    mail.init_app(app)
    task_queue.init_app(app)
    task_queue.register(EXECUTE_STEP_TASK, execute_step)

    app.register_blueprint(pipeline_bp)
    register_error_handlers(app)
    register_commands(app)

    with app.app_context():
        db.create_all()

    if app.config.get('SCHEDULER_AUTOSTART'):
        task_queue.start()
        atexit.register(task_queue.shutdown)

    return app


def register_error_handlers(app):
    @app.errorhandler(PipelineError)
    def handle_pipeline_error(e):
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        db.session.rollback()
        logger.error("Database integrity error: %s", e.orig)
        return jsonify({"error": "Database integrity error", "message": str(e.orig)}), 400

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({"error": "Not found", "message": "The requested URL was not found on the server."}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": "The method is not allowed for the requested URL."}), 405


def register_commands(app):
    @app.cli.command("reset-db")
    @click.confirmation_option(prompt="This drops ALL tables and data. Continue?")
    def reset_db():
        """Drop and recreate every table. Development only."""
        db.drop_all()
        db.create_all()
        click.echo("All tables recreated.")


if __name__ == "__main__":
    # The reloader would start a second scheduler in the child process
    create_app().run(
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", 5000)),
        debug=os.environ.get("FLASK_DEBUG") == "1",
        use_reloader=False
    )
