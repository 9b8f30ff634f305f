# Overview: Flask extension instances for the billing database and its migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()

# SQLite cannot ALTER constraints in place; batch mode rebuilds the table.
# compare_type lets autogenerate notice column type changes (e.g. cents columns).
migrate = Migrate(render_as_batch=True, compare_type=True)
