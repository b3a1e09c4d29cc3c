"""
Guard Shift Kanban
Shared SQLAlchemy instance.

Every model module imports ``db`` from here so Flask-Migrate sees a
single metadata object.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
