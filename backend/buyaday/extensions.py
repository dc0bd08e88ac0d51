# Overview: Flask extension instances for database, migrations, and notification delivery.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.notification_service import Notifier

db = SQLAlchemy()
migrate = Migrate()
notifier = Notifier()
