# Overview: Shared SQLAlchemy session and Flask-Migrate instances for the order engine.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()
