import os

os.environ["DATABASE_URL"] = "sqlite://"

import pytest

import app as app_module
from models import db


@pytest.fixture
def flask_app():
    app = app_module.app
    app.config["TESTING"] = True
    with app.app_context():
        db.drop_all()
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()
