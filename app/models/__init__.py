"""
Traceable Requirements Platform
Model package - shared SQLAlchemy instance.

Every model module imports ``db`` from here so that a single
Flask-SQLAlchemy extension is bound by the app factory.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
