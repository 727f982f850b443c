# Overview: Flask extension instances for database and migrations.

# backend/salonledger/extensions.py
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Bound to the app in create_app(); models and services import db from here
db = SQLAlchemy()
migrate = Migrate()
