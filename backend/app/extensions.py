"""
extensions.py — Flask extension singletons.

SQLAlchemy is created here without an app and bound in create_app() via
init_app(), so tests can build isolated app instances and services can
import `db` without circular imports.

    from backend.app.extensions import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
