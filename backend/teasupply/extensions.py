# Overview: Flask extension instances shared by models, services and CLI commands.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()
