from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or '*'

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, origins=allowed_origins)

    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # The session core is owned by the app; nothing is created at import time
    from duoplay.services.sessions.core import SessionCore
    flask_app.extensions['duoplay'] = SessionCore.from_app(flask_app, socketio)

    from duoplay.main import main
    flask_app.register_blueprint(main)

    from duoplay.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    from duoplay.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the session tables."""
        import duoplay.models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('expire-rematches')
    def expire_rematches_command():
        """Auto-declines every rematch request older than REMATCH_TIMEOUT_SEC."""
        with flask_app.app_context():
            expired = flask_app.extensions['duoplay'].expire_stale_rematches()
            print(f'Expired {len(expired)} rematch request(s)')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(expire_rematches_command)

    return flask_app
