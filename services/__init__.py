from flask import current_app

EXTENSION_KEY = "auth_engine"


def get_container():
    return current_app.extensions[EXTENSION_KEY]
