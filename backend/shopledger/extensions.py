# Overview: Flask extension instances shared by models, services and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()

# SQLite cannot ALTER most constraints in place; batch mode rebuilds tables.
migrate = Migrate(render_as_batch=True, compare_type=True)
